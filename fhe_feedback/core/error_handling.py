"""
Encrypted Feedback Ledger Error Handling

Every rejected call raises one of the exceptions below before any state is
touched, so a failed transition leaves the ledger exactly as it was.

Error Taxonomy:
==============
    Unauthorized       caller lacks admin / manager capability
    NotFound           referenced feedback, aggregate or blob is absent
    AlreadyRevealed    write-once snapshot already written
    InvalidRequest     unknown decryption request id
    ProofInvalid       oracle proof does not verify
    AlreadyAggregated  feedback id already folded into an aggregate
    CiphertextError    malformed or tampered ciphertext

Component Health:
================
Rejections that point at a misbehaving collaborator (for example repeated
oracle proof failures) are recorded in an ErrorTracker. The tracker keeps a
sliding window of errors and moves the component through

    HEALTHY -> DEGRADED -> FAILED -> RECOVERING -> HEALTHY

No retry policy lives here; retries are a caller/operator decision.
"""

import time
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional
from enum import Enum, auto

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================

class FeedbackLedgerError(Exception):
    """Base class for all ledger rejections."""

    code = "error"


class Unauthorized(FeedbackLedgerError):
    code = "unauthorized"


class NotFound(FeedbackLedgerError):
    code = "not_found"


class AlreadyRevealed(FeedbackLedgerError):
    code = "already_revealed"


class InvalidRequest(FeedbackLedgerError):
    code = "invalid_request"


class ProofInvalid(FeedbackLedgerError):
    code = "proof_invalid"


class AlreadyAggregated(FeedbackLedgerError):
    code = "already_aggregated"


class CiphertextError(FeedbackLedgerError):
    code = "ciphertext_error"


# =============================================================================
# Component Health
# =============================================================================

class ErrorSeverity(Enum):
    WARNING = auto()   # rejected call, component still trusted
    ERROR = auto()     # component misbehaved; counts toward failure


class ComponentState(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILED = "failed"
    RECOVERING = "recovering"


@dataclass
class ErrorEvent:
    timestamp: float
    severity: ErrorSeverity
    message: str
    context: Dict[str, Any] = field(default_factory=dict)


class ErrorTracker:
    """
    Sliding-window health of one collaborator (e.g. the decryption oracle).

    Any ERROR inside the window degrades the component; error_threshold of
    them fail it. Once the window has drained, the next success moves a
    failed component to RECOVERING, and it is HEALTHY again after
    recovery_time_s without a new failure.
    """

    def __init__(
        self,
        component_name: str,
        error_threshold: int = 5,
        window_s: float = 60.0,
        recovery_time_s: float = 10.0,
    ):
        self.component_name = component_name
        self.error_threshold = error_threshold
        self.window_s = window_s
        self.recovery_time_s = recovery_time_s

        self._errors: Deque[ErrorEvent] = deque()
        self._state = ComponentState.HEALTHY
        self._last_failure_time = 0.0
        self._lock = threading.Lock()

    def record_error(self, severity: ErrorSeverity, message: str, context: Optional[Dict[str, Any]] = None):
        with self._lock:
            self._errors.append(ErrorEvent(time.time(), severity, message, context or {}))
            self._prune()
            failures = self._failures()
            if failures >= self.error_threshold:
                self._last_failure_time = time.time()
                self._set_state(ComponentState.FAILED)
            elif failures and self._state != ComponentState.FAILED:
                self._set_state(ComponentState.DEGRADED)

        if severity == ErrorSeverity.ERROR:
            logger.error(f"[{self.component_name}] {message}")
        else:
            logger.warning(f"[{self.component_name}] {message}")

    def record_success(self):
        with self._lock:
            self._prune()
            if self._failures():
                return
            if self._state == ComponentState.FAILED:
                self._set_state(ComponentState.RECOVERING)
            if self._state == ComponentState.RECOVERING:
                if time.time() - self._last_failure_time > self.recovery_time_s:
                    self._set_state(ComponentState.HEALTHY)
            elif self._state == ComponentState.DEGRADED:
                self._set_state(ComponentState.HEALTHY)

    def _failures(self) -> int:
        return sum(1 for e in self._errors if e.severity == ErrorSeverity.ERROR)

    def _prune(self):
        cutoff = time.time() - self.window_s
        while self._errors and self._errors[0].timestamp <= cutoff:
            self._errors.popleft()

    def _set_state(self, new_state: ComponentState):
        if new_state != self._state:
            logger.info(f"[{self.component_name}] State: {self._state.value} -> {new_state.value}")
            self._state = new_state

    @property
    def state(self) -> ComponentState:
        with self._lock:
            return self._state

    @property
    def error_count(self) -> int:
        """Errors of any severity inside the current window."""
        with self._lock:
            self._prune()
            return len(self._errors)

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            self._prune()
            last = self._errors[-1] if self._errors else None
            return {
                "component": self.component_name,
                "state": self._state.value,
                "errors_in_window": len(self._errors),
                "last_error": None if last is None else {"message": last.message, **last.context},
            }
