"""
Encrypted Feedback Ledger Version

v0.3.0 Changes:
- Oblivious service-type routing across the registry
- Per-feedback aggregated flag (no double counting)
- Oracle proofs switched to Ed25519
- SQL-backed ciphertext store
"""

__version__ = "0.3.0"
__author__ = "FHE Feedback Ledger Contributors"
__status__ = "Beta"
