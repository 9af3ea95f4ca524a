#!/usr/bin/env python3
"""
Tests for the Feedback Ledger

Tests:
- Submission, identity binding and id allocation
- Rejection of malformed submissions
- Aggregated flag
- Listing, search and statistics
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


@pytest.fixture
def ledger(backend, events):
    from fhe_feedback.ledger.feedback_ledger import FeedbackLedger
    from fhe_feedback.ledger.store import InMemoryCiphertextStore
    return FeedbackLedger(InMemoryCiphertextStore(), backend, events=events)


@pytest.fixture
def client(backend):
    from fhe_feedback.client import FeedbackClient
    return FeedbackClient(backend)


# =============================================================================
# Submission
# =============================================================================

class TestSubmission:
    """Test suite for submit()."""

    def test_ids_are_monotonic(self, ledger, client):
        first = ledger.submit("alice", client.encrypt_feedback(1, 5, 10))
        second = ledger.submit("bob", client.encrypt_feedback(2, 3, 30))
        assert (first, second) == (1, 2)
        assert ledger.count == 2

    def test_ids_resume_after_persisted_feedback(self, ledger, client, backend):
        from fhe_feedback.ledger.feedback_ledger import FeedbackLedger

        for _ in range(3):
            ledger.submit("alice", client.encrypt_feedback(1, 5, 10))

        reopened = FeedbackLedger(ledger.store, backend)
        assert reopened.submit("bob", client.encrypt_feedback(2, 3, 30)) == 4
        assert reopened.count == 1

    def test_identity_binding(self, ledger, client):
        feedback_id = ledger.submit("alice", client.encrypt_feedback(1, 5, 10, "fast"))
        record = ledger.get(feedback_id)

        assert record.citizen == "alice"
        assert record.feedback_id == feedback_id
        assert ledger.feedback_for("alice") == [feedback_id]
        assert ledger.feedback_for("bob") == []

    def test_ciphertexts_written_to_store(self, ledger, client, backend):
        fields = client.encrypt_feedback(1, 5, 10, "fast")
        feedback_id = ledger.submit("alice", fields)

        assert ledger.store.get(f"feedback/{feedback_id}/rating") == fields.rating.blob
        assert backend.decrypt_bytes(ledger.get(feedback_id).comment) == b"fast"
        assert len(ledger.store.keys(f"feedback/{feedback_id}/")) == 4

    def test_submission_event(self, ledger, client, events):
        from fhe_feedback.platform.observability.events import EventKind

        feedback_id = ledger.submit("alice", client.encrypt_feedback(1, 5, 10))
        event = events.get_recent_events(limit=1)[0]

        assert event.kind == EventKind.FEEDBACK_SUBMITTED
        assert event.data == {"feedback_id": feedback_id}

    def test_blank_identity_rejected(self, ledger, client):
        from fhe_feedback.core.error_handling import Unauthorized

        with pytest.raises(Unauthorized):
            ledger.submit("  ", client.encrypt_feedback(1, 5, 10))
        assert ledger.count == 0

    def test_wrong_ciphertext_type_rejected(self, ledger, client, backend):
        from fhe_feedback.core.error_handling import CiphertextError
        from fhe_feedback.ledger.feedback_ledger import EncryptedFeedbackInput

        good = client.encrypt_feedback(1, 5, 10)
        bad = EncryptedFeedbackInput(
            service_type=good.service_type,
            rating=backend.encrypt_bytes(b"5"),
            response_time=good.response_time,
            comment=good.comment,
        )
        with pytest.raises(CiphertextError):
            ledger.submit("alice", bad)
        assert ledger.count == 0
        assert ledger.store.keys() == []

    def test_malformed_blob_rejected(self, ledger, client):
        from fhe_feedback.core.error_handling import CiphertextError
        from fhe_feedback.ledger.feedback_ledger import EncryptedFeedbackInput
        from fhe_feedback.shared.crypto.fhe_backend import EncryptedUint32

        good = client.encrypt_feedback(1, 5, 10)
        bad = EncryptedFeedbackInput(
            service_type=EncryptedUint32(b"garbage"),
            rating=good.rating,
            response_time=good.response_time,
            comment=good.comment,
        )
        with pytest.raises(CiphertextError):
            ledger.submit("alice", bad)

    def test_get_unknown(self, ledger):
        from fhe_feedback.core.error_handling import NotFound

        with pytest.raises(NotFound):
            ledger.get(1)


# =============================================================================
# Aggregated Flag
# =============================================================================

class TestAggregatedFlag:
    """Test suite for the per-feedback aggregated flag."""

    def test_mark_once(self, ledger, client):
        feedback_id = ledger.submit("alice", client.encrypt_feedback(1, 5, 10))
        assert not ledger.is_aggregated(feedback_id)

        ledger.mark_aggregated(feedback_id, 1)
        assert ledger.is_aggregated(feedback_id)

    def test_mark_twice_rejected(self, ledger, client):
        from fhe_feedback.core.error_handling import AlreadyAggregated

        feedback_id = ledger.submit("alice", client.encrypt_feedback(1, 5, 10))
        ledger.mark_aggregated(feedback_id, 1)

        with pytest.raises(AlreadyAggregated):
            ledger.mark_aggregated(feedback_id, 1)
        with pytest.raises(AlreadyAggregated):
            ledger.check_aggregatable(feedback_id)

    def test_mark_unknown(self, ledger):
        from fhe_feedback.core.error_handling import NotFound

        with pytest.raises(NotFound):
            ledger.mark_aggregated(7, 1)


# =============================================================================
# Listing & Statistics
# =============================================================================

class TestListing:
    """Test suite for list_feedback() and statistics()."""

    def _submit_three(self, ledger, client):
        for citizen in ("alice", "bob", "alice"):
            ledger.submit(citizen, client.encrypt_feedback(1, 4, 20))
        ledger.mark_aggregated(1, 5)

    def test_newest_first(self, ledger, client):
        self._submit_three(ledger, client)
        assert [s.feedback_id for s in ledger.list_feedback()] == [3, 2, 1]

    def test_search_by_id(self, ledger, client):
        self._submit_three(ledger, client)
        assert [s.feedback_id for s in ledger.list_feedback("3")] == [3]

    def test_search_by_routed_service_type(self, ledger, client):
        self._submit_three(ledger, client)
        result = ledger.list_feedback("5")

        assert [s.feedback_id for s in result] == [1]
        assert result[0].aggregated
        assert result[0].to_dict()["service_type"] == 5

    def test_statistics(self, ledger, client):
        self._submit_three(ledger, client)
        stats = ledger.statistics()

        assert stats["total"] == 3
        assert stats["aggregated"] == 1
        assert stats["pending"] == 2
        assert stats["by_service_type"] == {5: 1}
        assert stats["citizens"] == 2

    def test_is_available(self, ledger):
        assert ledger.is_available()
