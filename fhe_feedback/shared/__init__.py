"""
Shared Libraries for the Feedback Ledger

This package contains utilities used by the ledger, the citizen client and
the API:
- crypto: FHE backend and decryption oracle
"""

from . import crypto

__all__ = ['crypto']
