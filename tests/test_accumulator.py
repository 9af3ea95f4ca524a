#!/usr/bin/env python3
"""
Tests for the Aggregate Accumulator

Tests:
- Running total, count, average and improvement score
- Duplicate and unknown feedback
- Store history and events
- Oblivious routing over the service-type registry
"""

import sys
import os
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


@pytest.fixture
def backend():
    from fhe_feedback.shared.crypto.fhe_backend import MockFHEBackend
    return MockFHEBackend()


@pytest.fixture
def events():
    from fhe_feedback.platform.observability.events import EventRecorder
    return EventRecorder()


def build_accumulator(backend, events=None, service_types=(1, 2, 3), scoring=None):
    from fhe_feedback.aggregation.accumulator import AggregateAccumulator, ServiceTypeRegistry
    from fhe_feedback.ledger.feedback_ledger import FeedbackLedger
    from fhe_feedback.ledger.store import InMemoryCiphertextStore

    store = InMemoryCiphertextStore()
    ledger = FeedbackLedger(store, backend, events=events)
    return AggregateAccumulator(
        backend,
        ledger,
        store,
        registry=ServiceTypeRegistry(service_types),
        scoring=scoring,
        events=events,
    )


@pytest.fixture
def accumulator(backend, events):
    return build_accumulator(backend, events)


def submit(accumulator, service_type, rating, response_time, citizen="citizen"):
    from fhe_feedback.client import FeedbackClient

    fields = FeedbackClient(accumulator.backend).encrypt_feedback(service_type, rating, response_time)
    return accumulator.ledger.submit(citizen, fields)


def plain(backend, aggregate):
    return {
        "total_rating": backend.decrypt(aggregate.total_rating),
        "response_avg": backend.decrypt(aggregate.response_avg),
        "count": backend.decrypt(aggregate.count),
        "improvement_score": backend.decrypt(aggregate.improvement_score),
    }


# =============================================================================
# Explicit Routing
# =============================================================================

class TestUpdateAggregate:
    """Test suite for update_aggregate()."""

    def test_reference_scenario(self, accumulator, backend):
        """Ratings 5, 3, 4 with response times 10, 30, 20."""
        for rating, response_time in [(5, 10), (3, 30), (4, 20)]:
            feedback_id = submit(accumulator, 2, rating, response_time)
            accumulator.update_aggregate(2, feedback_id)

        aggregate = accumulator.get(2)
        assert plain(backend, aggregate) == {
            "total_rating": 12,
            "response_avg": 20,
            "count": 3,
            "improvement_score": 76,
        }
        assert aggregate.version == 3

    def test_improvement_score_steps(self, accumulator, backend):
        scores = []
        for rating, response_time in [(5, 10), (3, 30), (4, 20)]:
            feedback_id = submit(accumulator, 1, rating, response_time)
            scores.append(backend.decrypt(accumulator.update_aggregate(1, feedback_id).improvement_score))
        assert scores == [49, 63, 76]

    def test_count_equals_updates(self, accumulator, backend):
        for _ in range(7):
            accumulator.update_aggregate(3, submit(accumulator, 3, 4, 15))
        assert backend.decrypt(accumulator.get(3).count) == 7

    def test_running_average_never_exceeds_mean(self, accumulator, backend):
        times = [10, 11, 12, 7, 40, 3, 25]
        for n, response_time in enumerate(times, start=1):
            accumulator.update_aggregate(1, submit(accumulator, 1, 3, response_time))
            running = backend.decrypt(accumulator.get(1).response_avg)
            assert running <= sum(times[:n]) // n

    def test_running_average_exact_when_divisible(self, accumulator, backend):
        for _ in range(4):
            accumulator.update_aggregate(1, submit(accumulator, 1, 3, 30))
        assert backend.decrypt(accumulator.get(1).response_avg) == 30

    def test_custom_scoring(self, backend):
        from fhe_feedback.core.config_loader import ScoringConfig

        accumulator = build_accumulator(backend, scoring=ScoringConfig(rating_weight=10))
        aggregate = accumulator.update_aggregate(1, submit(accumulator, 1, 5, 10))
        # blend = (50 + 99) // 2 = 74, score = 74 // 2
        assert backend.decrypt(aggregate.improvement_score) == 37

    def test_duplicate_rejected(self, accumulator, backend):
        from fhe_feedback.core.error_handling import AlreadyAggregated

        feedback_id = submit(accumulator, 1, 5, 10)
        accumulator.update_aggregate(1, feedback_id)

        with pytest.raises(AlreadyAggregated):
            accumulator.update_aggregate(1, feedback_id)
        with pytest.raises(AlreadyAggregated):
            accumulator.update_aggregate(2, feedback_id)

        assert accumulator.get(1).version == 1
        assert backend.decrypt(accumulator.get(1).count) == 1
        assert not accumulator.exists(2)

    def test_unknown_feedback(self, accumulator):
        from fhe_feedback.core.error_handling import NotFound

        with pytest.raises(NotFound):
            accumulator.update_aggregate(1, 42)
        assert not accumulator.exists(1)

    def test_get_missing_aggregate(self, accumulator):
        from fhe_feedback.core.error_handling import NotFound

        with pytest.raises(NotFound):
            accumulator.get(1)

    def test_store_keeps_every_version(self, accumulator):
        for _ in range(3):
            accumulator.update_aggregate(2, submit(accumulator, 2, 4, 20))

        store = accumulator.store
        assert store.versions("aggregate/2/count") == 3
        assert store.get("aggregate/2/count") == accumulator.get(2).count.blob

    def test_unregistered_type_is_registered(self, accumulator):
        accumulator.update_aggregate(9, submit(accumulator, 9, 4, 20))
        assert 9 in accumulator.registry

    def test_marks_ledger(self, accumulator):
        feedback_id = submit(accumulator, 2, 4, 20)
        accumulator.update_aggregate(2, feedback_id)

        assert accumulator.ledger.is_aggregated(feedback_id)
        assert accumulator.ledger.statistics()["by_service_type"] == {2: 1}

    def test_update_event(self, accumulator, events):
        from fhe_feedback.platform.observability.events import EventKind

        feedback_id = submit(accumulator, 2, 4, 20)
        accumulator.update_aggregate(2, feedback_id)

        event = events.get_recent_events(limit=1, kind=EventKind.AGGREGATE_UPDATED)[0]
        assert event.data == {"service_type": 2, "feedback_id": feedback_id}


# =============================================================================
# Oblivious Routing
# =============================================================================

class TestObliviousRouting:
    """Test suite for update_aggregate_oblivious()."""

    def test_matches_explicit_routing(self, backend):
        explicit = build_accumulator(backend)
        oblivious = build_accumulator(backend)

        for rating, response_time in [(5, 10), (3, 30), (4, 20)]:
            explicit.update_aggregate(2, submit(explicit, 2, rating, response_time))
            oblivious.update_aggregate_oblivious(submit(oblivious, 2, rating, response_time))

        assert plain(backend, oblivious.get(2)) == plain(backend, explicit.get(2))

    def test_other_types_unchanged(self, accumulator, backend):
        accumulator.update_aggregate_oblivious(submit(accumulator, 2, 5, 10))

        for service_type in (1, 3):
            assert plain(backend, accumulator.get(service_type)) == {
                "total_rating": 0,
                "response_avg": 0,
                "count": 0,
                "improvement_score": 0,
            }

    def test_every_registered_aggregate_rewritten(self, accumulator):
        accumulator.update_aggregate_oblivious(submit(accumulator, 2, 5, 10))
        before = {st: agg.count.blob for st, agg in accumulator.aggregates().items()}

        touched = accumulator.update_aggregate_oblivious(submit(accumulator, 2, 3, 30))

        assert touched == [1, 2, 3]
        after = accumulator.aggregates()
        assert all(after[st].count.blob != before[st] for st in touched)
        assert all(after[st].version == 2 for st in touched)

    def test_unregistered_type_contributes_nothing(self, accumulator, backend):
        feedback_id = submit(accumulator, 7, 5, 10)
        accumulator.update_aggregate_oblivious(feedback_id)

        assert all(backend.decrypt(a.count) == 0 for a in accumulator.aggregates().values())
        assert accumulator.ledger.is_aggregated(feedback_id)

    def test_duplicate_rejected(self, accumulator):
        from fhe_feedback.core.error_handling import AlreadyAggregated

        feedback_id = submit(accumulator, 1, 5, 10)
        accumulator.update_aggregate_oblivious(feedback_id)

        with pytest.raises(AlreadyAggregated):
            accumulator.update_aggregate_oblivious(feedback_id)
        with pytest.raises(AlreadyAggregated):
            accumulator.update_aggregate(1, feedback_id)

    def test_empty_registry(self, backend):
        from fhe_feedback.core.error_handling import NotFound

        accumulator = build_accumulator(backend, service_types=())
        with pytest.raises(NotFound):
            accumulator.update_aggregate_oblivious(submit(accumulator, 1, 5, 10))


# =============================================================================
# Registry
# =============================================================================

class TestServiceTypeRegistry:
    """Test suite for ServiceTypeRegistry."""

    def test_sorted_iteration(self):
        from fhe_feedback.aggregation.accumulator import ServiceTypeRegistry

        registry = ServiceTypeRegistry([5, 1, 3])
        assert list(registry) == [1, 3, 5]
        assert len(registry) == 3

    def test_register_is_idempotent(self):
        from fhe_feedback.aggregation.accumulator import ServiceTypeRegistry

        registry = ServiceTypeRegistry([1])
        assert registry.register(2)
        assert not registry.register(2)

    def test_invalid_keys(self):
        from fhe_feedback.aggregation.accumulator import ServiceTypeRegistry

        registry = ServiceTypeRegistry()
        with pytest.raises(ValueError):
            registry.register(-1)
        with pytest.raises(ValueError):
            registry.register(True)
        with pytest.raises(ValueError):
            registry.register("2")
