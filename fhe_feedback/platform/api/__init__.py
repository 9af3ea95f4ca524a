"""
HTTP API (FastAPI) for the feedback ledger.
"""

from .main import create_app

__all__ = ['create_app']
