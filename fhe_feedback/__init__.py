"""
Encrypted Public-Service Feedback Ledger

Citizens submit encrypted feedback; per service-type aggregates are kept
homomorphically; authorized managers reveal aggregate snapshots through a
proof-checked decryption oracle.
"""

from .version import __version__

__all__ = ['__version__']
