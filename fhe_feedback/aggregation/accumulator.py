"""
Aggregate Accumulator - per service-type running encrypted statistics

For every folded feedback (rating r, response time t), with all arithmetic
done on ciphertexts:

    total'   = total + r
    count'   = count + 1
    avg'     = (avg * count + t) / count'
    blend    = (r * rating_weight + (response_ceiling - t / response_divisor)) / blend_divisor
    score'   = (score + blend) / blend_divisor

Defaults (20, 100, 10, 2) give score' = avg(score, avg(r*20, 100 - t/10)).
Integer division truncates, so avg never exceeds the true running mean.

Two routing modes:
- update_aggregate(service_type, feedback_id): the caller names the
  service type in plaintext.
- update_aggregate_oblivious(feedback_id): the encrypted service type is
  matched against every registered type with eq/select, every registered
  aggregate is rewritten, and nobody learns which one actually moved.
  Feedback whose encrypted type is not registered contributes nothing.
"""

import threading
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from fhe_feedback.core.config_loader import ScoringConfig
from fhe_feedback.core.error_handling import NotFound
from fhe_feedback.ledger.feedback_ledger import EncryptedFeedback, FeedbackLedger
from fhe_feedback.ledger.store import CiphertextStore
from fhe_feedback.platform.observability.events import EventKind, EventRecorder
from fhe_feedback.shared.crypto.fhe_backend import EncryptedUint32, FHEBackend, Operand

logger = logging.getLogger(__name__)

AGGREGATE_FIELDS = ("total_rating", "response_avg", "count", "improvement_score")


@dataclass(frozen=True)
class ServiceAggregate:
    service_type: int
    total_rating: EncryptedUint32
    response_avg: EncryptedUint32
    count: EncryptedUint32
    improvement_score: EncryptedUint32
    version: int = 0  # number of update passes applied (public)

    def handles(self) -> Tuple[EncryptedUint32, ...]:
        """Ciphertexts in AGGREGATE_FIELDS order."""
        return tuple(getattr(self, name) for name in AGGREGATE_FIELDS)


def aggregate_key(service_type: int, field: str) -> str:
    return f"aggregate/{service_type}/{field}"


class ServiceTypeRegistry:
    """Known service-type keys (replaces a fixed 1..N range)."""

    def __init__(self, service_types: Iterable[int] = ()):
        self._types = set()
        self._lock = threading.Lock()
        for service_type in service_types:
            self.register(service_type)

    def register(self, service_type: int) -> bool:
        if isinstance(service_type, bool) or not isinstance(service_type, int) or service_type < 0:
            raise ValueError(f"Service type must be a non-negative integer, got {service_type!r}")
        with self._lock:
            if service_type in self._types:
                return False
            self._types.add(service_type)
        logger.info(f"[Registry] Service type {service_type} registered")
        return True

    def __contains__(self, service_type: object) -> bool:
        with self._lock:
            return service_type in self._types

    def __iter__(self) -> Iterator[int]:
        with self._lock:
            return iter(sorted(self._types))

    def __len__(self) -> int:
        with self._lock:
            return len(self._types)


class AggregateAccumulator:
    def __init__(
        self,
        backend: FHEBackend,
        ledger: FeedbackLedger,
        store: CiphertextStore,
        registry: Optional[ServiceTypeRegistry] = None,
        scoring: Optional[ScoringConfig] = None,
        events: Optional[EventRecorder] = None,
    ):
        self.backend = backend
        self.ledger = ledger
        self.store = store
        self.registry = registry if registry is not None else ServiceTypeRegistry()
        self.scoring = scoring or ScoringConfig()
        self._events = events
        self._aggregates: Dict[int, ServiceAggregate] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def exists(self, service_type: int) -> bool:
        with self._lock:
            return service_type in self._aggregates

    def get(self, service_type: int) -> ServiceAggregate:
        with self._lock:
            aggregate = self._aggregates.get(service_type)
        if aggregate is None:
            raise NotFound(f"No aggregate for service type {service_type}")
        return aggregate

    def aggregates(self) -> Dict[int, ServiceAggregate]:
        with self._lock:
            return dict(self._aggregates)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def _zero(self, service_type: int) -> ServiceAggregate:
        zero = self.backend.zero()
        return ServiceAggregate(
            service_type=service_type,
            total_rating=zero,
            response_avg=zero,
            count=zero,
            improvement_score=zero,
        )

    def _fold(
        self,
        aggregate: ServiceAggregate,
        record: EncryptedFeedback,
        hit: Optional[EncryptedUint32] = None,
    ) -> ServiceAggregate:
        """Fold one feedback into an aggregate; with `hit`, only where hit == 1."""
        fhe = self.backend
        s = self.scoring
        rating, response_time = record.rating, record.response_time

        increment: Operand = 1 if hit is None else hit
        contribution = rating if hit is None else fhe.mul(hit, rating)

        count = fhe.add(aggregate.count, increment)
        total = fhe.add(aggregate.total_rating, contribution)
        response_avg = fhe.div(
            fhe.add(fhe.mul(aggregate.response_avg, aggregate.count), response_time),
            count,
        )
        blend = fhe.div(
            fhe.add(
                fhe.mul(rating, s.rating_weight),
                fhe.sub(s.response_ceiling, fhe.div(response_time, s.response_divisor)),
            ),
            s.blend_divisor,
        )
        score = fhe.div(fhe.add(aggregate.improvement_score, blend), s.blend_divisor)

        if hit is not None:
            # count' may be 0 here for a miss; select discards that division
            response_avg = fhe.select(hit, response_avg, aggregate.response_avg)
            score = fhe.select(hit, score, aggregate.improvement_score)

        return ServiceAggregate(
            service_type=aggregate.service_type,
            total_rating=total,
            response_avg=response_avg,
            count=count,
            improvement_score=score,
            version=aggregate.version + 1,
        )

    def _commit(self, aggregates: List[ServiceAggregate]):
        for aggregate in aggregates:
            for name in AGGREGATE_FIELDS:
                self.store.put(
                    aggregate_key(aggregate.service_type, name),
                    getattr(aggregate, name).blob,
                )
        for aggregate in aggregates:
            self._aggregates[aggregate.service_type] = aggregate

    def update_aggregate(self, service_type: int, feedback_id: int) -> ServiceAggregate:
        """Fold a feedback into the named service type's aggregate."""
        with self._lock:
            record = self.ledger.check_aggregatable(feedback_id)
            if service_type not in self.registry:
                self.registry.register(service_type)

            current = self._aggregates.get(service_type) or self._zero(service_type)
            updated = self._fold(current, record)

            self._commit([updated])
            self.ledger.mark_aggregated(feedback_id, service_type)

        logger.info(f"[Accumulator] Service type {service_type} updated (version {updated.version})")
        if self._events is not None:
            self._events.emit(
                EventKind.AGGREGATE_UPDATED,
                service_type=service_type,
                feedback_id=feedback_id,
            )
        return updated

    def update_aggregate_oblivious(self, feedback_id: int) -> List[int]:
        """Fold a feedback by its encrypted service type; returns types rewritten."""
        with self._lock:
            record = self.ledger.check_aggregatable(feedback_id)
            service_types = list(self.registry)
            if not service_types:
                raise NotFound("No service types registered for oblivious routing")

            updated = []
            for service_type in service_types:
                current = self._aggregates.get(service_type) or self._zero(service_type)
                hit = self.backend.eq(record.service_type, service_type)
                updated.append(self._fold(current, record, hit=hit))

            self._commit(updated)
            self.ledger.mark_aggregated(feedback_id, None)

        logger.info(f"[Accumulator] Feedback {feedback_id} routed obliviously over {len(service_types)} types")
        if self._events is not None:
            self._events.emit(
                EventKind.AGGREGATE_UPDATED,
                service_type=None,
                feedback_id=feedback_id,
            )
        return service_types
