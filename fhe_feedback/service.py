"""
Feedback Service - the single serialized context owning all ledger state

Every public operation runs under one re-entrant lock, so each call is
atomic and calls are totally ordered, the way a single ledger would
execute them. Components are wired once here and receive the store, the
backend and the event recorder by reference.

Usage:
    service = FeedbackService.from_config_file("config/config.yaml")
    fid = service.submit_feedback("citizen-1", fields)
    service.update_aggregate(2, fid)

    service.grant_manager("admin", "manager-1")
    request_id = service.request_reveal("manager-1", 2)
    service.deliver(request_id)
    service.get_decrypted(2)
"""

import os
import threading
import time
import logging
from typing import Any, Dict, List, Optional

from fhe_feedback.aggregation import analytics
from fhe_feedback.aggregation.accumulator import (
    AggregateAccumulator,
    ServiceAggregate,
    ServiceTypeRegistry,
)
from fhe_feedback.core.config_loader import AppConfig, load_and_validate_config
from fhe_feedback.core.error_handling import ErrorTracker, FeedbackLedgerError
from fhe_feedback.ledger.feedback_ledger import (
    EncryptedFeedback,
    EncryptedFeedbackInput,
    FeedbackLedger,
    FeedbackSummary,
)
from fhe_feedback.ledger.store import CiphertextStore, create_store
from fhe_feedback.platform.access_control import AccessControl
from fhe_feedback.platform.logging_utils import setup_logger
from fhe_feedback.platform.observability.events import EventKind, EventRecorder, LedgerEvent
from fhe_feedback.reveal.protocol import (
    DecryptedAggregate,
    RevealedValue,
    RevealProtocol,
    RevealState,
)
from fhe_feedback.shared.crypto.fhe_backend import (
    EncryptedUint32,
    FHEBackend,
    FHEConfig,
    create_fhe_backend,
)
from fhe_feedback.shared.crypto.oracle import DecryptionOracle
from fhe_feedback.version import __version__

logger = logging.getLogger(__name__)


class FeedbackService:
    def __init__(
        self,
        config: Optional[AppConfig] = None,
        backend: Optional[FHEBackend] = None,
        oracle: Optional[DecryptionOracle] = None,
        store: Optional[CiphertextStore] = None,
    ):
        self.config = config or AppConfig()
        cfg = self.config
        setup_logger("fhe_feedback", log_file=os.getenv("LOG_FILE"), level=cfg.system.log_level)

        self.events = EventRecorder(buffer_size=cfg.system.event_buffer_size)
        self.backend = backend or create_fhe_backend(
            cfg.fhe.backend,
            FHEConfig(integer_bits=cfg.fhe.integer_bits, security_bits=cfg.fhe.security_bits),
        )
        self.oracle = oracle or DecryptionOracle(self.backend)
        self.store = store or create_store(cfg.storage.database_url)

        self.access = AccessControl(
            cfg.access.admin_identity,
            cfg.access.initial_managers,
            events=self.events,
        )
        self.ledger = FeedbackLedger(self.store, self.backend, events=self.events)
        self.registry = ServiceTypeRegistry(cfg.registry.service_types)
        self.accumulator = AggregateAccumulator(
            self.backend,
            self.ledger,
            self.store,
            registry=self.registry,
            scoring=cfg.scoring,
            events=self.events,
        )
        self.oracle_health = ErrorTracker(
            "DecryptionOracle",
            error_threshold=cfg.oracle.proof_failure_threshold,
            window_s=cfg.oracle.proof_failure_window_s,
        )
        self.reveal = RevealProtocol(
            self.accumulator,
            self.oracle,
            self.access,
            authority_public_key=cfg.oracle.authority_public_key or None,
            events=self.events,
            error_tracker=self.oracle_health,
        )

        self._lock = threading.RLock()
        self.started_at = time.time()
        logger.info(
            f"[Service] Feedback ledger v{__version__} ready "
            f"(backend={self.backend.name}, service types={list(self.registry)})"
        )

    @classmethod
    def from_config_file(cls, config_path: str = "config/config.yaml", **kwargs) -> "FeedbackService":
        return cls(config=load_and_validate_config(config_path), **kwargs)

    # =========================================================================
    # Feedback
    # =========================================================================

    def submit_feedback(self, citizen: str, fields: EncryptedFeedbackInput) -> int:
        with self._lock:
            return self.ledger.submit(citizen, fields)

    def get_feedback(self, feedback_id: int) -> EncryptedFeedback:
        with self._lock:
            return self.ledger.get(feedback_id)

    def feedback_for(self, citizen: str) -> List[int]:
        with self._lock:
            return self.ledger.feedback_for(citizen)

    def list_feedback(self, search: Optional[str] = None) -> List[FeedbackSummary]:
        with self._lock:
            return self.ledger.list_feedback(search)

    def feedback_statistics(self) -> Dict[str, Any]:
        with self._lock:
            return self.ledger.statistics()

    # =========================================================================
    # Aggregation
    # =========================================================================

    def update_aggregate(self, service_type: int, feedback_id: int) -> ServiceAggregate:
        with self._lock:
            return self.accumulator.update_aggregate(service_type, feedback_id)

    def update_aggregate_oblivious(self, feedback_id: int) -> List[int]:
        with self._lock:
            return self.accumulator.update_aggregate_oblivious(feedback_id)

    def get_aggregate(self, service_type: int) -> ServiceAggregate:
        with self._lock:
            return self.accumulator.get(service_type)

    def aggregates(self) -> Dict[int, ServiceAggregate]:
        with self._lock:
            return self.accumulator.aggregates()

    def register_service_type(self, caller: str, service_type: int) -> bool:
        """Admin-only registry growth for oblivious routing."""
        with self._lock:
            self.access.require_admin(caller)
            return self.registry.register(service_type)

    # =========================================================================
    # Analytics (encrypted results)
    # =========================================================================

    def priority_service(self) -> EncryptedUint32:
        with self._lock:
            return analytics.priority_service(self.backend, self.accumulator.aggregates())

    def degradation_flags(self, response_threshold: int) -> Dict[int, EncryptedUint32]:
        with self._lock:
            return analytics.degradation_flags(
                self.backend, self.accumulator.aggregates(), response_threshold
            )

    def efficiency_index(self, service_type: int) -> EncryptedUint32:
        with self._lock:
            return analytics.efficiency_index(self.backend, self.accumulator.get(service_type))

    def trust_index(self) -> EncryptedUint32:
        with self._lock:
            return analytics.trust_index(self.backend, self.accumulator.aggregates())

    def best_improvement(self) -> EncryptedUint32:
        with self._lock:
            return analytics.best_improvement(self.backend, self.accumulator.aggregates())

    # =========================================================================
    # Reveal
    # =========================================================================

    def request_reveal(self, caller: str, service_type: int) -> int:
        with self._lock:
            return self.reveal.request_reveal(caller, service_type)

    def complete_reveal(self, request_id: int, cleartext: bytes, proof: bytes):
        with self._lock:
            return self.reveal.complete_reveal(request_id, cleartext, proof)

    def request_value_reveal(self, caller: str, label: str, handle: EncryptedUint32) -> int:
        with self._lock:
            return self.reveal.request_value_reveal(caller, label, handle)

    def deliver(self, request_id: Optional[int] = None) -> Dict[int, Optional[FeedbackLedgerError]]:
        """Let the oracle deliver one pending request, or all of them."""
        with self._lock:
            if request_id is None:
                return self.oracle.deliver_all()
            try:
                self.oracle.deliver(request_id)
                return {request_id: None}
            except FeedbackLedgerError as e:
                logger.warning(f"[Service] Delivery of request {request_id} rejected: {e}")
                return {request_id: e}

    def get_decrypted(self, service_type: int) -> DecryptedAggregate:
        with self._lock:
            return self.reveal.get_decrypted(service_type)

    def revealed_value(self, request_id: int) -> RevealedValue:
        with self._lock:
            return self.reveal.revealed_value(request_id)

    def reveal_state(self, service_type: int) -> RevealState:
        with self._lock:
            return self.reveal.state(service_type)

    # =========================================================================
    # Authorization
    # =========================================================================

    def grant_manager(self, caller: str, identity: str) -> bool:
        with self._lock:
            return self.access.grant_manager(caller, identity)

    def revoke_manager(self, caller: str, identity: str) -> bool:
        with self._lock:
            return self.access.revoke_manager(caller, identity)

    def is_manager(self, identity: str) -> bool:
        return self.access.is_manager(identity)

    # =========================================================================
    # Status
    # =========================================================================

    def recent_events(self, limit: int = 50, kind: Optional[EventKind] = None) -> List[LedgerEvent]:
        return self.events.get_recent_events(limit=limit, kind=kind)

    def is_available(self) -> bool:
        return self.ledger.is_available()

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "version": __version__,
                "uptime_s": time.time() - self.started_at,
                "backend": self.backend.name,
                "store_available": self.store.is_available(),
                "feedback": self.ledger.statistics(),
                "service_types": list(self.registry),
                "aggregates": {
                    st: {
                        "version": agg.version,
                        "state": self.reveal.state(st).value,
                    }
                    for st, agg in sorted(self.accumulator.aggregates().items())
                },
                "pending_requests": [r.request_id for r in self.reveal.pending_requests()],
                "oracle": self.oracle_health.get_status(),
                "events_emitted": self.events.count,
                "fhe_stats": self.backend.get_stats(),
            }
