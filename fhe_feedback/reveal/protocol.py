"""
Decryption Request / Reveal Protocol

Per service type:

    UNINITIALIZED --update--> ACCUMULATING --request_reveal--> REVEAL_PENDING
                                                                    |
                                            complete_reveal (valid) v
                                                                REVEALED

request_reveal() snapshots the aggregate's four handles and hands them to the
decryption oracle. complete_reveal() is the oracle callback: it checks the
request binding, verifies the Ed25519 proof over (request id, snapshot
handles, cleartext) and writes the DecryptedAggregate exactly once.

Several requests may be pending for one service type; the first valid
completion wins and the others are consumed with it. A ProofInvalid
rejection leaves the request bound so a correct delivery can still succeed.
The aggregate keeps accumulating after a reveal, the snapshot does not move.
"""

import threading
import time
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from fhe_feedback.aggregation.accumulator import AGGREGATE_FIELDS, AggregateAccumulator
from fhe_feedback.core.error_handling import (
    AlreadyRevealed,
    ErrorSeverity,
    ErrorTracker,
    InvalidRequest,
    NotFound,
    ProofInvalid,
)
from fhe_feedback.platform.access_control import AccessControl
from fhe_feedback.platform.observability.events import EventKind, EventRecorder
from fhe_feedback.shared.crypto.fhe_backend import EncryptedUint32
from fhe_feedback.shared.crypto.oracle import (
    DecryptionOracle,
    PublicKeyLike,
    decode_cleartexts,
    load_public_key,
    verify_decryption_proof,
)

logger = logging.getLogger(__name__)


class RevealState(str, Enum):
    UNINITIALIZED = "uninitialized"
    ACCUMULATING = "accumulating"
    REVEAL_PENDING = "reveal_pending"
    REVEALED = "revealed"


class RequestKind(str, Enum):
    AGGREGATE = "aggregate"
    VALUE = "value"


@dataclass(frozen=True)
class DecryptedAggregate:
    """Write-once plaintext snapshot of one service type's aggregate."""
    service_type: int
    total_rating: int = 0
    avg_rating: int = 0
    avg_response_time: int = 0
    count: int = 0
    improvement_score: int = 0
    revealed: bool = False
    request_id: Optional[int] = None
    revealed_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DecryptionRequest:
    request_id: int
    kind: RequestKind
    handles: Tuple[EncryptedUint32, ...]
    requested_by: str
    requested_at: float
    service_type: Optional[int] = None
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "kind": self.kind.value,
            "requested_by": self.requested_by,
            "requested_at": self.requested_at,
            "service_type": self.service_type,
            "label": self.label,
        }


@dataclass(frozen=True)
class RevealedValue:
    """Plaintext of a single analytics handle."""
    request_id: int
    label: str
    value: int
    revealed_at: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RevealProtocol:
    def __init__(
        self,
        accumulator: AggregateAccumulator,
        oracle: DecryptionOracle,
        access: AccessControl,
        authority_public_key: Optional[PublicKeyLike] = None,
        events: Optional[EventRecorder] = None,
        error_tracker: Optional[ErrorTracker] = None,
    ):
        self.accumulator = accumulator
        self.oracle = oracle
        self.access = access
        # Proofs are checked against the configured authority, else the oracle's own key
        self._authority_key = (
            load_public_key(authority_public_key)
            if authority_public_key
            else oracle.public_key
        )
        self._events = events
        self.oracle_health = error_tracker or ErrorTracker("DecryptionOracle")

        self._requests: Dict[int, DecryptionRequest] = {}
        self._consumed: Set[int] = set()
        self._snapshots: Dict[int, DecryptedAggregate] = {}
        self._values: Dict[int, RevealedValue] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _submit(self, handles: Sequence[EncryptedUint32], **binding) -> DecryptionRequest:
        request_id = self.oracle.request_decryption(handles, self.complete_reveal)
        request = DecryptionRequest(
            request_id=request_id,
            handles=tuple(handles),
            requested_at=time.time(),
            **binding,
        )
        self._requests[request_id] = request
        return request

    def request_reveal(self, caller: str, service_type: int) -> int:
        """Ask the oracle to decrypt the current aggregate of a service type."""
        self.access.require_manager(caller)
        with self._lock:
            aggregate = self.accumulator.get(service_type)
            if self._is_revealed(service_type):
                raise AlreadyRevealed(f"Service type {service_type} is already revealed")
            request = self._submit(
                aggregate.handles(),
                kind=RequestKind.AGGREGATE,
                requested_by=caller,
                service_type=service_type,
            )

        logger.info(f"[Reveal] Request {request.request_id} for service type {service_type}")
        if self._events is not None:
            self._events.emit(
                EventKind.REVEAL_REQUESTED,
                request_id=request.request_id,
                service_type=service_type,
            )
        return request.request_id

    def request_value_reveal(self, caller: str, label: str, handle: EncryptedUint32) -> int:
        """Ask the oracle to decrypt one analytics handle."""
        self.access.require_manager(caller)
        if not label or not label.strip():
            raise ValueError("Value reveals need a label")
        if not isinstance(handle, EncryptedUint32):
            raise TypeError(f"Expected EncryptedUint32, got {type(handle).__name__}")
        with self._lock:
            request = self._submit(
                [handle],
                kind=RequestKind.VALUE,
                requested_by=caller,
                label=label,
            )

        logger.info(f"[Reveal] Value request {request.request_id} ({label})")
        if self._events is not None:
            self._events.emit(
                EventKind.REVEAL_REQUESTED,
                request_id=request.request_id,
                label=label,
            )
        return request.request_id

    # ------------------------------------------------------------------
    # Oracle callback
    # ------------------------------------------------------------------

    def _reject_proof(self, request_id: int, message: str):
        self.oracle_health.record_error(
            ErrorSeverity.ERROR,
            f"Request {request_id}: {message}",
            context={"request_id": request_id},
        )
        raise ProofInvalid(f"Request {request_id}: {message}")

    def complete_reveal(self, request_id: int, cleartext: bytes, proof: bytes):
        """Verify an oracle result and commit it."""
        with self._lock:
            if request_id in self._consumed:
                raise AlreadyRevealed(f"Request {request_id} was already completed")
            request = self._requests.get(request_id)
            if request is None:
                raise InvalidRequest(f"Unknown decryption request {request_id}")

            if not verify_decryption_proof(self._authority_key, request_id, request.handles, cleartext, proof):
                self._reject_proof(request_id, "decryption proof does not verify")
            try:
                values = decode_cleartexts(cleartext, expected=len(request.handles))
            except ValueError as e:
                self._reject_proof(request_id, f"signed cleartext is malformed ({e})")

            if request.kind == RequestKind.AGGREGATE:
                result = self._commit_snapshot(request, values)
            else:
                result = self._commit_value(request, values[0])
            self.oracle_health.record_success()

        if self._events is not None:
            if request.kind == RequestKind.AGGREGATE:
                self._events.emit(
                    EventKind.AGGREGATE_DECRYPTED,
                    request_id=request_id,
                    service_type=request.service_type,
                )
            else:
                self._events.emit(
                    EventKind.VALUE_DECRYPTED,
                    request_id=request_id,
                    label=request.label,
                )
        return result

    def _consume(self, request_id: int):
        self._requests.pop(request_id, None)
        self._consumed.add(request_id)
        self.oracle.abandon(request_id)

    def _commit_snapshot(self, request: DecryptionRequest, values: List[int]) -> DecryptedAggregate:
        service_type = request.service_type
        if self._is_revealed(service_type):
            raise AlreadyRevealed(f"Service type {service_type} is already revealed")

        plain = dict(zip(AGGREGATE_FIELDS, values))
        count = plain["count"]
        snapshot = DecryptedAggregate(
            service_type=service_type,
            total_rating=plain["total_rating"],
            avg_rating=plain["total_rating"] // count if count else 0,
            avg_response_time=plain["response_avg"],
            count=count,
            improvement_score=plain["improvement_score"],
            revealed=True,
            request_id=request.request_id,
            revealed_at=time.time(),
        )
        self._snapshots[service_type] = snapshot

        # First valid completion wins; sibling requests are retired with it
        siblings = [
            r.request_id for r in self._requests.values()
            if r.kind == RequestKind.AGGREGATE
            and r.service_type == service_type
            and r.request_id != request.request_id
        ]
        self._consume(request.request_id)
        for sibling in siblings:
            self._consume(sibling)

        logger.info(f"[Reveal] Service type {service_type} revealed by request {request.request_id}")
        return snapshot

    def _commit_value(self, request: DecryptionRequest, value: int) -> RevealedValue:
        revealed = RevealedValue(
            request_id=request.request_id,
            label=request.label,
            value=value,
            revealed_at=time.time(),
        )
        self._values[request.request_id] = revealed
        self._consume(request.request_id)
        logger.info(f"[Reveal] Value request {request.request_id} ({request.label}) revealed")
        return revealed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _is_revealed(self, service_type: int) -> bool:
        snapshot = self._snapshots.get(service_type)
        return snapshot is not None and snapshot.revealed

    def get_decrypted(self, service_type: int) -> DecryptedAggregate:
        """Revealed snapshot, or an empty unrevealed one for a known aggregate."""
        with self._lock:
            snapshot = self._snapshots.get(service_type)
            if snapshot is not None:
                return snapshot
            if not self.accumulator.exists(service_type):
                raise NotFound(f"No aggregate for service type {service_type}")
            return DecryptedAggregate(service_type=service_type)

    def revealed_value(self, request_id: int) -> RevealedValue:
        with self._lock:
            value = self._values.get(request_id)
            if value is not None:
                return value
            if request_id in self._requests:
                raise NotFound(f"Request {request_id} has not been delivered yet")
        raise InvalidRequest(f"No value reveal with request id {request_id}")

    def state(self, service_type: int) -> RevealState:
        with self._lock:
            if self._is_revealed(service_type):
                return RevealState.REVEALED
            if any(
                r.kind == RequestKind.AGGREGATE and r.service_type == service_type
                for r in self._requests.values()
            ):
                return RevealState.REVEAL_PENDING
            if self.accumulator.exists(service_type):
                return RevealState.ACCUMULATING
            return RevealState.UNINITIALIZED

    def pending_requests(self) -> List[DecryptionRequest]:
        with self._lock:
            return [self._requests[k] for k in sorted(self._requests)]

    def revealed_service_types(self) -> List[int]:
        with self._lock:
            return sorted(k for k, s in self._snapshots.items() if s.revealed)
