"""
Derived analytics over encrypted aggregates.

Stateless views: each function takes aggregates (service type ->
ServiceAggregate) and returns ciphertext handles. Seeing a result requires
a separate, manager-gated decryption request.
"""

from typing import Dict, Mapping

from fhe_feedback.aggregation.accumulator import ServiceAggregate
from fhe_feedback.core.error_handling import NotFound
from fhe_feedback.shared.crypto.fhe_backend import EncryptedUint32, FHEBackend


def _require(aggregates: Mapping[int, ServiceAggregate]):
    if not aggregates:
        raise NotFound("No aggregates to analyse")


def priority_service(backend: FHEBackend, aggregates: Mapping[int, ServiceAggregate]) -> EncryptedUint32:
    """Encrypted service type with the lowest improvement score.

    Ties resolve to the lowest service-type key.
    """
    _require(aggregates)
    items = sorted(aggregates.items())
    first_type, first = items[0]
    best_type = backend.constant(first_type)
    best_score = first.improvement_score
    for service_type, aggregate in items[1:]:
        lower = backend.lt(aggregate.improvement_score, best_score)
        best_type = backend.select(lower, service_type, best_type)
        best_score = backend.min(aggregate.improvement_score, best_score)
    return best_type


def degradation_flags(
    backend: FHEBackend,
    aggregates: Mapping[int, ServiceAggregate],
    response_threshold: int,
) -> Dict[int, EncryptedUint32]:
    """Per service type: encrypted 1 if the average response time exceeds the threshold."""
    _require(aggregates)
    return {
        service_type: backend.gt(aggregate.response_avg, response_threshold)
        for service_type, aggregate in sorted(aggregates.items())
    }


def efficiency_index(backend: FHEBackend, aggregate: ServiceAggregate) -> EncryptedUint32:
    """total_rating * 100 / (response_avg + 1)"""
    return backend.div(
        backend.mul(aggregate.total_rating, 100),
        backend.add(aggregate.response_avg, 1),
    )


def trust_index(backend: FHEBackend, aggregates: Mapping[int, ServiceAggregate]) -> EncryptedUint32:
    """Mean improvement score across service types."""
    _require(aggregates)
    total = backend.zero()
    for _, aggregate in sorted(aggregates.items()):
        total = backend.add(total, aggregate.improvement_score)
    return backend.div(total, len(aggregates))


def best_improvement(backend: FHEBackend, aggregates: Mapping[int, ServiceAggregate]) -> EncryptedUint32:
    _require(aggregates)
    items = sorted(aggregates.items())
    best = items[0][1].improvement_score
    for _, aggregate in items[1:]:
        best = backend.max(best, aggregate.improvement_score)
    return best
