"""
Decryption Oracle

The oracle is the only party holding the FHE secret key. The ledger asks it
to decrypt a list of handles; some time later the oracle calls back with the
cleartexts and a proof. The proof is an Ed25519 signature by the oracle
authority over

    domain || request_id || digest(handles) || digest(cleartext)

so a cleartext can neither be replayed for another request nor attached to
different handles.

Deliveries are explicit (deliver / deliver_all) so callers decide when and in
which order callbacks arrive. A delivery whose callback raises stays pending
and may be retried.
"""

import hashlib
import struct
import threading
import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from fhe_feedback.core.error_handling import FeedbackLedgerError, InvalidRequest
from fhe_feedback.shared.crypto.fhe_backend import EncryptedUint32, FHEBackend

logger = logging.getLogger(__name__)

PROOF_DOMAIN = b"fhe-feedback/decryption-proof/v1"
_WORD = struct.Struct(">Q")

DecryptionCallback = Callable[[int, bytes, bytes], Any]
PublicKeyLike = Union[ed25519.Ed25519PublicKey, bytes, str]


# =============================================================================
# Encoding helpers
# =============================================================================

def encode_cleartexts(values: Sequence[int]) -> bytes:
    """Pack plaintext integers as big-endian unsigned 64-bit words."""
    return b"".join(_WORD.pack(int(v)) for v in values)


def decode_cleartexts(data: bytes, expected: Optional[int] = None) -> List[int]:
    """Unpack big-endian 64-bit words; raises ValueError on bad length."""
    if len(data) % _WORD.size:
        raise ValueError(f"Cleartext length {len(data)} is not a multiple of {_WORD.size}")
    values = [_WORD.unpack_from(data, i)[0] for i in range(0, len(data), _WORD.size)]
    if expected is not None and len(values) != expected:
        raise ValueError(f"Expected {expected} cleartext values, got {len(values)}")
    return values


def handles_digest(handles: Sequence[EncryptedUint32]) -> bytes:
    h = hashlib.sha256()
    for ct in handles:
        h.update(hashlib.sha256(ct.blob).digest())
    return h.digest()


def proof_message(request_id: int, handles: Sequence[EncryptedUint32], cleartext: bytes) -> bytes:
    return (
        PROOF_DOMAIN
        + request_id.to_bytes(8, 'big')
        + handles_digest(handles)
        + hashlib.sha256(cleartext).digest()
    )


def load_public_key(key: PublicKeyLike) -> ed25519.Ed25519PublicKey:
    """Accept a key object, raw 32 bytes, or their hex encoding."""
    if isinstance(key, ed25519.Ed25519PublicKey):
        return key
    if isinstance(key, str):
        key = bytes.fromhex(key)
    return ed25519.Ed25519PublicKey.from_public_bytes(key)


def verify_decryption_proof(
    public_key: PublicKeyLike,
    request_id: int,
    handles: Sequence[EncryptedUint32],
    cleartext: bytes,
    proof: bytes,
) -> bool:
    """Verify the oracle authority's signature over a decryption result."""
    try:
        load_public_key(public_key).verify(
            bytes(proof), proof_message(request_id, handles, cleartext)
        )
        return True
    except (InvalidSignature, ValueError, TypeError) as e:
        logger.warning(f"[Oracle] Proof verification failed for request {request_id}: {type(e).__name__}")
        return False


# =============================================================================
# Oracle
# =============================================================================

@dataclass
class PendingDecryption:
    request_id: int
    handles: Tuple[EncryptedUint32, ...]
    callback: DecryptionCallback
    requested_at: float
    attempts: int = 0


class DecryptionOracle:
    """Threshold-free reference oracle backed by a single secret key.

    Usage:
        oracle = DecryptionOracle(backend)
        request_id = oracle.request_decryption(handles, on_decrypted)
        ...
        oracle.deliver(request_id)   # invokes on_decrypted(id, cleartext, proof)
    """

    def __init__(
        self,
        backend: FHEBackend,
        signing_key: Optional[ed25519.Ed25519PrivateKey] = None,
    ):
        self.backend = backend
        self._signing_key = signing_key or ed25519.Ed25519PrivateKey.generate()
        self._pending: Dict[int, PendingDecryption] = {}
        self._next_request_id = 1
        self._lock = threading.RLock()
        self.stats = {
            'requests': 0,
            'delivered': 0,
            'failed_deliveries': 0,
        }

    @property
    def public_key(self) -> ed25519.Ed25519PublicKey:
        return self._signing_key.public_key()

    def public_key_hex(self) -> str:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        ).hex()

    def sign(self, request_id: int, handles: Sequence[EncryptedUint32], cleartext: bytes) -> bytes:
        return self._signing_key.sign(proof_message(request_id, handles, cleartext))

    def request_decryption(
        self,
        handles: Sequence[EncryptedUint32],
        callback: DecryptionCallback,
    ) -> int:
        """Queue handles for decryption and return the request id."""
        if not handles:
            raise ValueError("Nothing to decrypt")
        with self._lock:
            request_id = self._next_request_id
            self._next_request_id += 1
            self._pending[request_id] = PendingDecryption(
                request_id=request_id,
                handles=tuple(handles),
                callback=callback,
                requested_at=time.time(),
            )
            self.stats['requests'] += 1
        logger.info(f"[Oracle] Decryption request {request_id} queued ({len(handles)} handles)")
        return request_id

    def pending(self) -> List[int]:
        with self._lock:
            return sorted(self._pending)

    def decrypt_request(self, request_id: int) -> Tuple[bytes, bytes]:
        """Return (cleartext, proof) for a pending request without delivering it."""
        with self._lock:
            entry = self._pending.get(request_id)
        if entry is None:
            raise InvalidRequest(f"Oracle has no pending request {request_id}")
        cleartext = encode_cleartexts(self.backend.decrypt(ct) for ct in entry.handles)
        return cleartext, self.sign(request_id, entry.handles, cleartext)

    def deliver(self, request_id: int) -> Any:
        """Decrypt, sign and invoke the callback for one request.

        The request is dropped only when the callback succeeds.
        """
        cleartext, proof = self.decrypt_request(request_id)
        with self._lock:
            entry = self._pending[request_id]
            entry.attempts += 1
        try:
            result = entry.callback(request_id, cleartext, proof)
        except FeedbackLedgerError:
            self.stats['failed_deliveries'] += 1
            raise
        with self._lock:
            self._pending.pop(request_id, None)
            self.stats['delivered'] += 1
        logger.info(f"[Oracle] Decryption request {request_id} delivered")
        return result

    def deliver_all(self, order: Optional[Sequence[int]] = None) -> Dict[int, Optional[FeedbackLedgerError]]:
        """Deliver every pending request (optionally in a given order).

        Returns request id -> None on success, or the rejection raised by the
        callback. Rejected requests stay pending.
        """
        outcome: Dict[int, Optional[FeedbackLedgerError]] = {}
        for request_id in (order if order is not None else self.pending()):
            if order is None and request_id not in self.pending():
                # abandoned by an earlier callback in this pass
                continue
            try:
                self.deliver(request_id)
                outcome[request_id] = None
            except FeedbackLedgerError as e:
                logger.warning(f"[Oracle] Delivery of request {request_id} rejected: {e}")
                outcome[request_id] = e
        return outcome

    def abandon(self, request_id: int) -> bool:
        with self._lock:
            return self._pending.pop(request_id, None) is not None
