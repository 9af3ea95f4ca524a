"""
FHE Backend - Encrypted Integer Interface

This module provides the ciphertext-handle interface the ledger computes
with. The ledger never sees plaintext: it only passes handles through the
backend's homomorphic operations and hands them to the decryption oracle.

Integer semantics (all backends):
- Unsigned fixed width (32 bits by default)
- add / sub / mul wrap modulo 2**bits
- div is floor division; x / 0 yields the all-ones value
- comparisons yield an encrypted 0 or 1
- select(c, a, b) yields a where c != 0, else b

Architecture:
    Citizen              Ledger                     Decryption Oracle
    ───────              ──────                     ─────────────────
    1. encrypt(rating) ──► 2. store handle
                           3. add / div / select
                           4. request reveal ─────► 5. decrypt + sign
                        ◄──────────────────────────  6. cleartext + proof
"""

import gzip
import hashlib
import secrets
import time
import logging
import numpy as np
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from fhe_feedback.core.error_handling import CiphertextError

logger = logging.getLogger(__name__)

# =============================================================================
# Ciphertext Handles
# =============================================================================

_MAGIC = b"FHM1"
_KIND_UINT = 0x01
_KIND_BYTES = 0x02
_NONCE_LEN = 12
_TAG_LEN = 16
_HEADER_LEN = len(_MAGIC) + 2
_MIN_LEN = _HEADER_LEN + _NONCE_LEN + _TAG_LEN

_DTYPES = {
    8: np.uint8,
    16: np.uint16,
    32: np.uint32,
    64: np.uint64,
}


@dataclass(frozen=True)
class EncryptedUint32:
    """Opaque encrypted unsigned integer."""
    blob: bytes

    @property
    def handle(self) -> str:
        """Stable short identifier, safe to log."""
        return hashlib.sha256(self.blob).hexdigest()[:16]


@dataclass(frozen=True)
class EncryptedBytes:
    """Opaque encrypted byte payload (never used in arithmetic)."""
    blob: bytes

    @property
    def handle(self) -> str:
        return hashlib.sha256(self.blob).hexdigest()[:16]


Ciphertext = Union[EncryptedUint32, EncryptedBytes]
Operand = Union[EncryptedUint32, int]


def get_available_backends() -> List[str]:
    """Return list of available FHE backends."""
    return ['mock']


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class FHEConfig:
    """Configuration for FHE backend.

    Attributes:
        backend: Backend name ('mock')
        integer_bits: Width of encrypted integers (8, 16, 32 or 64)
        security_bits: Target security level (informational for mock)
        secret_key: Fixed AES key (16, 24 or 32 bytes); random when None
    """
    backend: str = 'mock'
    integer_bits: int = 32
    security_bits: int = 128
    secret_key: Optional[bytes] = None


# =============================================================================
# Abstract Backend Interface
# =============================================================================

class FHEBackend(ABC):
    """Abstract base class for FHE backends.

    Implementations must provide:
    - encrypt() / constant() / decrypt() for integers
    - encrypt_bytes() / decrypt_bytes() for opaque payloads
    - evaluate(): one homomorphic operation over handles or scalars
    - deserialize(): bytes back to a handle
    """

    OPERATIONS = (
        'add', 'sub', 'mul', 'div', 'min', 'max',
        'eq', 'ne', 'lt', 'le', 'gt', 'ge', 'select',
    )

    def __init__(self, config: FHEConfig = None):
        self.config = config or FHEConfig()
        if self.config.integer_bits not in _DTYPES:
            raise ValueError(
                f"Unsupported integer width {self.config.integer_bits}; "
                f"choose one of {sorted(_DTYPES)}"
            )
        self.max_value = (1 << self.config.integer_bits) - 1
        self.stats = {
            'encryptions': 0,
            'decryptions': 0,
            'homomorphic_ops': 0,
            'bytes_encrypted': 0,
            'total_time_ms': 0.0,
        }

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name."""
        pass

    @abstractmethod
    def encrypt(self, value: int) -> EncryptedUint32:
        """Encrypt an unsigned integer."""
        pass

    @abstractmethod
    def constant(self, value: int) -> EncryptedUint32:
        """Trivially encrypt a public constant."""
        pass

    @abstractmethod
    def decrypt(self, ciphertext: EncryptedUint32) -> int:
        """Decrypt an integer handle (secret-key holders only)."""
        pass

    @abstractmethod
    def encrypt_bytes(self, data: bytes) -> EncryptedBytes:
        pass

    @abstractmethod
    def decrypt_bytes(self, ciphertext: EncryptedBytes) -> bytes:
        pass

    @abstractmethod
    def evaluate(self, op: str, *operands: Operand) -> EncryptedUint32:
        """Apply one homomorphic operation."""
        pass

    @abstractmethod
    def deserialize(self, blob: bytes) -> Ciphertext:
        """Parse bytes produced by serialize()."""
        pass

    def serialize(self, ciphertext: Ciphertext) -> bytes:
        return ciphertext.blob

    def zero(self) -> EncryptedUint32:
        return self.constant(0)

    # Named operations ------------------------------------------------------

    def add(self, a: Operand, b: Operand) -> EncryptedUint32:
        return self.evaluate('add', a, b)

    def sub(self, a: Operand, b: Operand) -> EncryptedUint32:
        return self.evaluate('sub', a, b)

    def mul(self, a: Operand, b: Operand) -> EncryptedUint32:
        return self.evaluate('mul', a, b)

    def div(self, a: Operand, b: Operand) -> EncryptedUint32:
        return self.evaluate('div', a, b)

    def min(self, a: Operand, b: Operand) -> EncryptedUint32:
        return self.evaluate('min', a, b)

    def max(self, a: Operand, b: Operand) -> EncryptedUint32:
        return self.evaluate('max', a, b)

    def eq(self, a: Operand, b: Operand) -> EncryptedUint32:
        return self.evaluate('eq', a, b)

    def ne(self, a: Operand, b: Operand) -> EncryptedUint32:
        return self.evaluate('ne', a, b)

    def lt(self, a: Operand, b: Operand) -> EncryptedUint32:
        return self.evaluate('lt', a, b)

    def le(self, a: Operand, b: Operand) -> EncryptedUint32:
        return self.evaluate('le', a, b)

    def gt(self, a: Operand, b: Operand) -> EncryptedUint32:
        return self.evaluate('gt', a, b)

    def ge(self, a: Operand, b: Operand) -> EncryptedUint32:
        return self.evaluate('ge', a, b)

    def select(self, condition: Operand, a: Operand, b: Operand) -> EncryptedUint32:
        return self.evaluate('select', condition, a, b)

    def get_stats(self) -> Dict[str, Any]:
        """Get encryption statistics."""
        return self.stats.copy()


# =============================================================================
# Mock Backend (Development)
# =============================================================================

class MockFHEBackend(FHEBackend):
    """Mock backend for development and testing.

    Ciphertexts are AES-GCM sealed under a per-backend key, so handles are
    opaque to anyone without the key and tampering is detected, but this
    is NOT homomorphic encryption: every operation decrypts, computes with
    numpy fixed-width arithmetic, and re-encrypts under a fresh nonce.
    Use only for development and testing, never in production.
    """

    def __init__(self, config: FHEConfig = None):
        super().__init__(config)
        self._aead = AESGCM(self.config.secret_key or AESGCM.generate_key(bit_length=256))
        self._dtype = _DTYPES[self.config.integer_bits]
        logger.warning("[MockFHE] Using mock backend - NO HOMOMORPHIC ENCRYPTION!")

    @property
    def name(self) -> str:
        return 'mock'

    # Cipher ------------------------------------------------------------------

    def _seal(self, kind: int, payload: bytes, nonce: bytes) -> bytes:
        # header is bound as associated data: kind and width cannot be swapped
        header = _MAGIC + bytes([kind, self.config.integer_bits])
        return header + nonce + self._aead.encrypt(nonce, payload, header)

    def _open(self, blob: bytes, kind: int) -> bytes:
        self._check_structure(blob, kind)
        blob = bytes(blob)
        header = blob[:_HEADER_LEN]
        nonce = blob[_HEADER_LEN:_HEADER_LEN + _NONCE_LEN]
        try:
            return self._aead.decrypt(nonce, blob[_HEADER_LEN + _NONCE_LEN:], header)
        except InvalidTag as e:
            raise CiphertextError("Ciphertext authentication failed (wrong key or tampered)") from e

    def _check_structure(self, blob: bytes, kind: Optional[int] = None):
        if not isinstance(blob, (bytes, bytearray)) or len(blob) < _MIN_LEN:
            raise CiphertextError("Ciphertext too short")
        if blob[:len(_MAGIC)] != _MAGIC:
            raise CiphertextError("Not a mock FHE ciphertext")
        blob_kind, bits = blob[len(_MAGIC)], blob[len(_MAGIC) + 1]
        if kind is not None and blob_kind != kind:
            raise CiphertextError(f"Unexpected ciphertext kind {blob_kind}")
        if blob_kind == _KIND_UINT:
            if bits != self.config.integer_bits:
                raise CiphertextError(
                    f"Ciphertext width {bits} does not match backend width {self.config.integer_bits}"
                )
            if len(blob) != _MIN_LEN + 8:
                raise CiphertextError("Malformed integer ciphertext")
        elif blob_kind != _KIND_BYTES:
            raise CiphertextError(f"Unknown ciphertext kind {blob_kind}")

    # Integers ----------------------------------------------------------------

    def _check_range(self, value: int) -> int:
        if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
            raise TypeError(f"Expected an integer, got {type(value).__name__}")
        value = int(value)
        if value < 0 or value > self.max_value:
            raise ValueError(f"Value {value} outside [0, {self.max_value}]")
        return value

    def _seal_uint(self, value: int, nonce: bytes) -> EncryptedUint32:
        return EncryptedUint32(self._seal(_KIND_UINT, value.to_bytes(8, 'big'), nonce))

    def encrypt(self, value: int) -> EncryptedUint32:
        start = time.time()
        result = self._seal_uint(self._check_range(value), secrets.token_bytes(_NONCE_LEN))

        self.stats['encryptions'] += 1
        self.stats['bytes_encrypted'] += len(result.blob)
        self.stats['total_time_ms'] += (time.time() - start) * 1000
        return result

    def constant(self, value: int) -> EncryptedUint32:
        value = self._check_range(value)
        # nonce is a function of the value: one GCM nonce per plaintext
        nonce = hashlib.sha256(b"constant" + value.to_bytes(8, 'big')).digest()[:_NONCE_LEN]
        return self._seal_uint(value, nonce)

    def decrypt(self, ciphertext: EncryptedUint32) -> int:
        value = self._open_uint(ciphertext)
        self.stats['decryptions'] += 1
        return value

    def _open_uint(self, ciphertext: EncryptedUint32) -> int:
        if not isinstance(ciphertext, EncryptedUint32):
            raise CiphertextError(f"Expected EncryptedUint32, got {type(ciphertext).__name__}")
        return int.from_bytes(self._open(ciphertext.blob, _KIND_UINT), 'big')

    # Bytes -------------------------------------------------------------------

    def encrypt_bytes(self, data: bytes) -> EncryptedBytes:
        start = time.time()
        result = EncryptedBytes(self._seal(
            _KIND_BYTES, gzip.compress(bytes(data)), secrets.token_bytes(_NONCE_LEN)
        ))

        self.stats['encryptions'] += 1
        self.stats['bytes_encrypted'] += len(result.blob)
        self.stats['total_time_ms'] += (time.time() - start) * 1000
        return result

    def decrypt_bytes(self, ciphertext: EncryptedBytes) -> bytes:
        if not isinstance(ciphertext, EncryptedBytes):
            raise CiphertextError(f"Expected EncryptedBytes, got {type(ciphertext).__name__}")
        data = gzip.decompress(self._open(ciphertext.blob, _KIND_BYTES))
        self.stats['decryptions'] += 1
        return data

    # Homomorphic evaluation --------------------------------------------------

    def _as_array(self, operand: Operand) -> np.ndarray:
        if isinstance(operand, EncryptedUint32):
            value = self._open_uint(operand)
        else:
            value = self._check_range(operand)
        return np.array([value], dtype=self._dtype)

    def evaluate(self, op: str, *operands: Operand) -> EncryptedUint32:
        """'Homomorphic' operation: decrypt, compute, re-encrypt."""
        if op not in self.OPERATIONS:
            raise ValueError(f"Unknown operation: {op}")
        expected = 3 if op == 'select' else 2
        if len(operands) != expected:
            raise ValueError(f"{op} takes {expected} operands, got {len(operands)}")

        start = time.time()
        arrays = [self._as_array(o) for o in operands]
        result = self._compute(op, *arrays)
        sealed = self._seal_uint(int(result[0]), secrets.token_bytes(_NONCE_LEN))

        self.stats['homomorphic_ops'] += 1
        self.stats['total_time_ms'] += (time.time() - start) * 1000
        return sealed

    def _compute(self, op: str, *arrays: np.ndarray) -> np.ndarray:
        dtype = self._dtype
        if op == 'select':
            condition, a, b = arrays
            return np.where(condition != 0, a, b).astype(dtype)

        a, b = arrays
        if op == 'add':
            return a + b
        if op == 'sub':
            return a - b
        if op == 'mul':
            return a * b
        if op == 'div':
            safe = np.where(b == 0, np.ones_like(b), b)
            return np.where(b == 0, np.array([self.max_value], dtype=dtype), a // safe).astype(dtype)
        if op == 'min':
            return np.minimum(a, b)
        if op == 'max':
            return np.maximum(a, b)

        comparisons = {
            'eq': np.equal,
            'ne': np.not_equal,
            'lt': np.less,
            'le': np.less_equal,
            'gt': np.greater,
            'ge': np.greater_equal,
        }
        return comparisons[op](a, b).astype(dtype)

    def deserialize(self, blob: bytes) -> Ciphertext:
        blob = bytes(blob)
        self._check_structure(blob)
        if blob[len(_MAGIC)] == _KIND_UINT:
            return EncryptedUint32(blob)
        return EncryptedBytes(blob)


# =============================================================================
# Factory Function
# =============================================================================

def create_fhe_backend(
    backend: str = 'mock',
    config: FHEConfig = None,
) -> FHEBackend:
    """Create an FHE backend instance.

    Args:
        backend: Backend type ('mock')
        config: FHE configuration (optional)

    Returns:
        FHEBackend instance
    """
    if config is None:
        config = FHEConfig(backend=backend)
    else:
        config.backend = backend

    if backend == 'mock':
        return MockFHEBackend(config)

    raise ValueError(f"Unknown backend: {backend}. Available: {get_available_backends()}")
