"""
Core utilities: configuration loading and the error taxonomy.
"""

from .error_handling import (
    FeedbackLedgerError,
    Unauthorized,
    NotFound,
    AlreadyRevealed,
    InvalidRequest,
    ProofInvalid,
    AlreadyAggregated,
    CiphertextError,
    ErrorSeverity,
    ComponentState,
    ErrorTracker,
)

__all__ = [
    'FeedbackLedgerError',
    'Unauthorized',
    'NotFound',
    'AlreadyRevealed',
    'InvalidRequest',
    'ProofInvalid',
    'AlreadyAggregated',
    'CiphertextError',
    'ErrorSeverity',
    'ComponentState',
    'ErrorTracker',
]
