#!/usr/bin/env python3
"""
Tests for the decryption oracle and proof verification.
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
def oracle(backend):
    from fhe_feedback.shared.crypto.oracle import DecryptionOracle
    return DecryptionOracle(backend)


class Recorder:
    """Callback that remembers every delivery."""

    def __init__(self):
        self.calls = []

    def __call__(self, request_id, cleartext, proof):
        self.calls.append((request_id, cleartext, proof))


# =============================================================================
# Cleartext Encoding
# =============================================================================

class TestCleartextEncoding:
    """Test suite for the cleartext bundle format."""

    def test_big_endian_words(self):
        from fhe_feedback.shared.crypto.oracle import encode_cleartexts

        assert encode_cleartexts([1, 2]) == bytes(7) + b"\x01" + bytes(7) + b"\x02"

    def test_decode(self):
        from fhe_feedback.shared.crypto.oracle import decode_cleartexts, encode_cleartexts

        assert decode_cleartexts(encode_cleartexts([3, 12, 20, 76]), expected=4) == [3, 12, 20, 76]

    def test_bad_length(self):
        from fhe_feedback.shared.crypto.oracle import decode_cleartexts

        with pytest.raises(ValueError):
            decode_cleartexts(b"\x00" * 7)

    def test_unexpected_count(self):
        from fhe_feedback.shared.crypto.oracle import decode_cleartexts, encode_cleartexts

        with pytest.raises(ValueError):
            decode_cleartexts(encode_cleartexts([1, 2, 3]), expected=4)


# =============================================================================
# Oracle
# =============================================================================

class TestDecryptionOracle:
    """Test suite for request / deliver."""

    def test_request_ids_are_monotonic(self, backend, oracle):
        ct = backend.encrypt(1)
        assert oracle.request_decryption([ct], Recorder()) == 1
        assert oracle.request_decryption([ct], Recorder()) == 2
        assert oracle.pending() == [1, 2]

    def test_empty_request_rejected(self, oracle):
        with pytest.raises(ValueError):
            oracle.request_decryption([], Recorder())

    def test_deliver_invokes_callback_with_valid_proof(self, backend, oracle):
        from fhe_feedback.shared.crypto.oracle import decode_cleartexts, verify_decryption_proof

        handles = [backend.encrypt(12), backend.encrypt(20)]
        callback = Recorder()
        request_id = oracle.request_decryption(handles, callback)

        oracle.deliver(request_id)

        assert len(callback.calls) == 1
        delivered_id, cleartext, proof = callback.calls[0]
        assert delivered_id == request_id
        assert decode_cleartexts(cleartext) == [12, 20]
        assert verify_decryption_proof(oracle.public_key_hex(), request_id, handles, cleartext, proof)
        assert oracle.pending() == []

    def test_proof_bound_to_request_id(self, backend, oracle):
        from fhe_feedback.shared.crypto.oracle import verify_decryption_proof

        handles = [backend.encrypt(5)]
        request_id = oracle.request_decryption(handles, Recorder())
        cleartext, proof = oracle.decrypt_request(request_id)

        assert not verify_decryption_proof(oracle.public_key, request_id + 1, handles, cleartext, proof)

    def test_proof_bound_to_handles(self, backend, oracle):
        from fhe_feedback.shared.crypto.oracle import verify_decryption_proof

        handles = [backend.encrypt(5)]
        request_id = oracle.request_decryption(handles, Recorder())
        cleartext, proof = oracle.decrypt_request(request_id)

        other = [backend.encrypt(5)]
        assert not verify_decryption_proof(oracle.public_key, request_id, other, cleartext, proof)

    def test_proof_bound_to_cleartext(self, backend, oracle):
        from fhe_feedback.shared.crypto.oracle import encode_cleartexts, verify_decryption_proof

        handles = [backend.encrypt(5)]
        request_id = oracle.request_decryption(handles, Recorder())
        _, proof = oracle.decrypt_request(request_id)

        forged = encode_cleartexts([6])
        assert not verify_decryption_proof(oracle.public_key, request_id, handles, forged, proof)

    def test_garbage_proof(self, backend, oracle):
        from fhe_feedback.shared.crypto.oracle import verify_decryption_proof

        handles = [backend.encrypt(5)]
        request_id = oracle.request_decryption(handles, Recorder())
        cleartext, _ = oracle.decrypt_request(request_id)

        assert not verify_decryption_proof(oracle.public_key, request_id, handles, cleartext, b"short")

    def test_rejected_delivery_stays_pending(self, backend, oracle):
        from fhe_feedback.core.error_handling import ProofInvalid

        attempts = []

        def flaky(request_id, cleartext, proof):
            attempts.append(request_id)
            if len(attempts) == 1:
                raise ProofInvalid("first attempt rejected")

        request_id = oracle.request_decryption([backend.encrypt(1)], flaky)

        with pytest.raises(ProofInvalid):
            oracle.deliver(request_id)
        assert oracle.pending() == [request_id]

        oracle.deliver(request_id)
        assert oracle.pending() == []
        assert attempts == [request_id, request_id]

    def test_deliver_unknown_request(self, oracle):
        from fhe_feedback.core.error_handling import InvalidRequest

        with pytest.raises(InvalidRequest):
            oracle.deliver(99)

    def test_deliver_all_in_custom_order(self, backend, oracle):
        callback = Recorder()
        first = oracle.request_decryption([backend.encrypt(1)], callback)
        second = oracle.request_decryption([backend.encrypt(2)], callback)

        outcome = oracle.deliver_all(order=[second, first])

        assert outcome == {second: None, first: None}
        assert [c[0] for c in callback.calls] == [second, first]

    def test_deliver_all_reports_rejections(self, backend, oracle):
        from fhe_feedback.core.error_handling import AlreadyRevealed

        def reject(request_id, cleartext, proof):
            raise AlreadyRevealed("done")

        request_id = oracle.request_decryption([backend.encrypt(1)], reject)
        outcome = oracle.deliver_all()

        assert isinstance(outcome[request_id], AlreadyRevealed)
        assert oracle.pending() == [request_id]

    def test_abandon(self, backend, oracle):
        request_id = oracle.request_decryption([backend.encrypt(1)], Recorder())
        assert oracle.abandon(request_id)
        assert not oracle.abandon(request_id)
        assert oracle.pending() == []

    def test_load_public_key_from_hex(self, oracle):
        from fhe_feedback.shared.crypto.oracle import load_public_key

        key = load_public_key(oracle.public_key_hex())
        assert key.public_bytes_raw() == bytes.fromhex(oracle.public_key_hex())
