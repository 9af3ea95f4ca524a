"""
Shared Cryptographic Primitives for the Feedback Ledger

Supported Backends:
1. Mock - keyed toy cipher, development/testing without real FHE

Usage:
    from fhe_feedback.shared.crypto import create_fhe_backend, DecryptionOracle

    backend = create_fhe_backend('mock')

    # Citizen side
    rating = backend.encrypt(4)

    # Ledger side (never decrypts)
    total = backend.add(backend.zero(), rating)

    # Oracle side
    oracle = DecryptionOracle(backend)
    request_id = oracle.request_decryption([total], on_decrypted)
    oracle.deliver(request_id)
"""

from .fhe_backend import (
    EncryptedUint32,
    EncryptedBytes,
    FHEBackend,
    FHEConfig,
    MockFHEBackend,
    create_fhe_backend,
    get_available_backends,
)
from .oracle import (
    DecryptionOracle,
    decode_cleartexts,
    encode_cleartexts,
    load_public_key,
    verify_decryption_proof,
)

__all__ = [
    'EncryptedUint32',
    'EncryptedBytes',
    'FHEBackend',
    'FHEConfig',
    'MockFHEBackend',
    'create_fhe_backend',
    'get_available_backends',
    'DecryptionOracle',
    'decode_cleartexts',
    'encode_cleartexts',
    'load_public_key',
    'verify_decryption_proof',
]
