"""
Reveal Protocol - manager-gated, oracle-verified decryption of aggregates.
"""

from .protocol import (
    DecryptedAggregate,
    DecryptionRequest,
    RequestKind,
    RevealedValue,
    RevealProtocol,
    RevealState,
)

__all__ = [
    'DecryptedAggregate',
    'DecryptionRequest',
    'RequestKind',
    'RevealedValue',
    'RevealProtocol',
    'RevealState',
]
