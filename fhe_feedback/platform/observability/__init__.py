"""
Observability Module - Ledger Event Surface

Usage:
    from fhe_feedback.platform.observability import EventRecorder, EventKind

    events = EventRecorder(buffer_size=1000)
    events.subscribe(lambda e: print(e.kind, e.data))
    events.emit(EventKind.FEEDBACK_SUBMITTED, feedback_id=1)
"""

from .events import (
    EventKind,
    LedgerEvent,
    EventRecorder,
)

__all__ = [
    'EventKind',
    'LedgerEvent',
    'EventRecorder',
]
