"""
Ledger - ciphertext storage and the append-only feedback record.
"""

from .store import (
    CiphertextStore,
    InMemoryCiphertextStore,
    SqlCiphertextStore,
    create_store,
)
from .feedback_ledger import (
    EncryptedFeedback,
    EncryptedFeedbackInput,
    FeedbackLedger,
    FeedbackSummary,
)

__all__ = [
    'CiphertextStore',
    'InMemoryCiphertextStore',
    'SqlCiphertextStore',
    'create_store',
    'EncryptedFeedback',
    'EncryptedFeedbackInput',
    'FeedbackLedger',
    'FeedbackSummary',
]
