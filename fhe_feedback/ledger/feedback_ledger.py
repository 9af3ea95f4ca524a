"""
Feedback Ledger - append-only record of encrypted citizen feedback

Each submission gets the next monotonic id, is stored immutably and is
indexed under the submitting identity. Content cannot be validated (it is
encrypted); the enforced invariants are identity binding and the
per-feedback "aggregated" flag that stops a record from being folded into
an aggregate twice.
"""

import threading
import time
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fhe_feedback.core.error_handling import (
    AlreadyAggregated,
    CiphertextError,
    NotFound,
    Unauthorized,
)
from fhe_feedback.ledger.store import CiphertextStore
from fhe_feedback.platform.observability.events import EventKind, EventRecorder
from fhe_feedback.shared.crypto.fhe_backend import EncryptedBytes, EncryptedUint32, FHEBackend

logger = logging.getLogger(__name__)

INTEGER_FIELDS = ("service_type", "rating", "response_time")
FEEDBACK_FIELDS = INTEGER_FIELDS + ("comment",)


@dataclass(frozen=True)
class EncryptedFeedbackInput:
    """The four ciphertexts a citizen submits."""
    service_type: EncryptedUint32
    rating: EncryptedUint32
    response_time: EncryptedUint32
    comment: EncryptedBytes


@dataclass(frozen=True)
class EncryptedFeedback:
    feedback_id: int
    citizen: str
    service_type: EncryptedUint32
    rating: EncryptedUint32
    response_time: EncryptedUint32
    comment: EncryptedBytes
    submitted_at: float


@dataclass(frozen=True)
class FeedbackSummary:
    """Public, ciphertext-free view of a record."""
    feedback_id: int
    citizen: str
    submitted_at: float
    aggregated: bool
    service_type: Optional[int]  # only known when routed explicitly

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feedback_id": self.feedback_id,
            "citizen": self.citizen,
            "submitted_at": self.submitted_at,
            "aggregated": self.aggregated,
            "service_type": self.service_type,
        }


def feedback_key(feedback_id: int, field: str) -> str:
    return f"feedback/{feedback_id}/{field}"


class FeedbackLedger:
    def __init__(
        self,
        store: CiphertextStore,
        backend: FHEBackend,
        events: Optional[EventRecorder] = None,
    ):
        self.store = store
        self.backend = backend
        self._events = events
        self._records: Dict[int, EncryptedFeedback] = {}
        self._by_citizen: Dict[str, List[int]] = {}
        # feedback id -> routed service type (None when routed obliviously)
        self._aggregated: Dict[int, Optional[int]] = {}
        self._next_id = self._first_free_id()
        self._lock = threading.RLock()

    def _first_free_id(self) -> int:
        """Next id after any feedback already persisted in the store.

        Records from an earlier process stay in the store but are not
        re-indexed, so they can never be aggregated again.
        """
        ids = [int(key.split("/")[1]) for key in self.store.keys("feedback/")]
        if not ids:
            return 1
        logger.info(f"[Ledger] Store holds feedback up to id {max(ids)}; resuming after it")
        return max(ids) + 1

    def _validate(self, fields: EncryptedFeedbackInput):
        for name in INTEGER_FIELDS:
            if not isinstance(getattr(fields, name), EncryptedUint32):
                raise CiphertextError(f"Field {name!r} must be an encrypted integer")
        if not isinstance(fields.comment, EncryptedBytes):
            raise CiphertextError("Field 'comment' must be an encrypted payload")
        for name in FEEDBACK_FIELDS:
            # structural check only; the ledger holds no key
            self.backend.deserialize(getattr(fields, name).blob)

    def submit(self, citizen: str, fields: EncryptedFeedbackInput) -> int:
        """Store a new record bound to the caller and return its id."""
        if not citizen or not str(citizen).strip():
            raise Unauthorized("Submissions require a caller identity")
        self._validate(fields)

        with self._lock:
            feedback_id = self._next_id
            for name in FEEDBACK_FIELDS:
                self.store.put(feedback_key(feedback_id, name), getattr(fields, name).blob)

            record = EncryptedFeedback(
                feedback_id=feedback_id,
                citizen=citizen,
                service_type=fields.service_type,
                rating=fields.rating,
                response_time=fields.response_time,
                comment=fields.comment,
                submitted_at=time.time(),
            )
            self._records[feedback_id] = record
            self._by_citizen.setdefault(citizen, []).append(feedback_id)
            self._next_id += 1

        logger.info(f"[Ledger] Feedback {feedback_id} submitted")
        if self._events is not None:
            self._events.emit(EventKind.FEEDBACK_SUBMITTED, feedback_id=feedback_id)
        return feedback_id

    def get(self, feedback_id: int) -> EncryptedFeedback:
        with self._lock:
            record = self._records.get(feedback_id)
        if record is None:
            raise NotFound(f"Feedback {feedback_id} does not exist")
        return record

    def feedback_for(self, citizen: str) -> List[int]:
        with self._lock:
            return list(self._by_citizen.get(citizen, ()))

    def is_aggregated(self, feedback_id: int) -> bool:
        with self._lock:
            return feedback_id in self._aggregated

    def check_aggregatable(self, feedback_id: int) -> EncryptedFeedback:
        """Return the record if it exists and has not been aggregated yet."""
        record = self.get(feedback_id)
        if self.is_aggregated(feedback_id):
            raise AlreadyAggregated(f"Feedback {feedback_id} is already aggregated")
        return record

    def mark_aggregated(self, feedback_id: int, service_type: Optional[int] = None):
        with self._lock:
            self.check_aggregatable(feedback_id)
            self._aggregated[feedback_id] = service_type

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    def _summary(self, record: EncryptedFeedback) -> FeedbackSummary:
        return FeedbackSummary(
            feedback_id=record.feedback_id,
            citizen=record.citizen,
            submitted_at=record.submitted_at,
            aggregated=record.feedback_id in self._aggregated,
            service_type=self._aggregated.get(record.feedback_id),
        )

    def list_feedback(self, search: Optional[str] = None) -> List[FeedbackSummary]:
        """Newest first; search matches the id or the routed service type."""
        with self._lock:
            summaries = [self._summary(r) for r in self._records.values()]

        if search:
            term = search.strip().lower()
            summaries = [
                s for s in summaries
                if term in str(s.feedback_id)
                or (s.service_type is not None and term in str(s.service_type))
            ]
        return sorted(summaries, key=lambda s: (s.submitted_at, s.feedback_id), reverse=True)

    def statistics(self) -> Dict[str, Any]:
        with self._lock:
            total = len(self._records)
            aggregated = len(self._aggregated)
            by_service: Dict[int, int] = {}
            for service_type in self._aggregated.values():
                if service_type is not None:
                    by_service[service_type] = by_service.get(service_type, 0) + 1
            citizens = len(self._by_citizen)
        return {
            "total": total,
            "aggregated": aggregated,
            "pending": total - aggregated,
            "by_service_type": by_service,
            "citizens": citizens,
        }

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def is_available(self) -> bool:
        return self.store.is_available()
