"""
Ledger Event Recorder
Captures the observable event surface of the ledger: submissions, aggregate
updates, reveal requests and reveals. Events carry ids and service types
only, never ciphertexts or plaintexts.
"""

import time
import collections
import threading
import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    FEEDBACK_SUBMITTED = "feedback_submitted"
    AGGREGATE_UPDATED = "aggregate_updated"
    REVEAL_REQUESTED = "reveal_requested"
    AGGREGATE_DECRYPTED = "aggregate_decrypted"
    VALUE_DECRYPTED = "value_decrypted"
    MANAGER_GRANTED = "manager_granted"
    MANAGER_REVOKED = "manager_revoked"


@dataclass(frozen=True)
class LedgerEvent:
    sequence: int
    timestamp: float
    kind: EventKind
    data: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        record = asdict(self)
        record["kind"] = self.kind.value
        return record


class EventRecorder:
    def __init__(self, buffer_size: int = 1000):
        # Bounded buffer; sequence numbers keep counting past evictions
        self.events: collections.deque = collections.deque(maxlen=buffer_size)
        self._sequence = 0
        self._subscribers: List[Callable[[LedgerEvent], None]] = []
        self._lock = threading.Lock()

    def emit(self, kind: EventKind, **data: Any) -> LedgerEvent:
        """Record an event and notify subscribers."""
        with self._lock:
            self._sequence += 1
            event = LedgerEvent(
                sequence=self._sequence,
                timestamp=time.time(),
                kind=kind,
                data=dict(data),
            )
            self.events.append(event)
            subscribers = list(self._subscribers)

        logger.debug(f"[Events] #{event.sequence} {kind.value} {event.data}")
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"[Events] Subscriber failed on {kind.value}: {e}")
        return event

    def subscribe(self, callback: Callable[[LedgerEvent], None]):
        with self._lock:
            self._subscribers.append(callback)

    def get_recent_events(self, limit: int = 50, kind: Optional[EventKind] = None) -> List[LedgerEvent]:
        """Most recent events first, optionally filtered by kind."""
        with self._lock:
            events = [e for e in self.events if kind is None or e.kind == kind]
        return list(reversed(events))[:limit]

    @property
    def count(self) -> int:
        """Total events emitted, including evicted ones."""
        with self._lock:
            return self._sequence
