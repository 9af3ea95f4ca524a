"""
Ciphertext Store - append-only key -> ciphertext bytes

Every put() adds a new version under the key; earlier versions stay
readable and nothing is ever overwritten or deleted. The ledger keeps
feedback ciphertexts under ``feedback/<id>/<field>`` (one version each) and
aggregate ciphertexts under ``aggregate/<service_type>/<field>`` (one version
per update), so the store doubles as the aggregate's audit history.

Two implementations share the interface:
- InMemoryCiphertextStore: dict of version lists
- SqlCiphertextStore: SQLAlchemy, any database URL (SQLite by default)
"""

import threading
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError

from fhe_feedback.core.error_handling import NotFound
from fhe_feedback.ledger.database import (
    DEFAULT_DATABASE_URL,
    CiphertextBlob,
    create_db_engine,
    init_db,
)

logger = logging.getLogger(__name__)


class CiphertextStore(ABC):
    """Append-only mapping of key -> versioned ciphertext bytes."""

    @abstractmethod
    def _append(self, key: str, blob: bytes) -> int:
        pass

    @abstractmethod
    def _read(self, key: str, version: Optional[int]) -> Optional[bytes]:
        pass

    @abstractmethod
    def versions(self, key: str) -> int:
        """Number of versions stored under key (0 if absent)."""
        pass

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        pass

    @abstractmethod
    def is_available(self) -> bool:
        pass

    def put(self, key: str, blob: bytes) -> int:
        """Append a new version and return its number (starting at 1)."""
        if not isinstance(key, str) or not key:
            raise ValueError("Store key must be a non-empty string")
        if not isinstance(blob, (bytes, bytearray)):
            raise TypeError(f"Store values must be bytes, got {type(blob).__name__}")
        return self._append(key, bytes(blob))

    def get(self, key: str, version: Optional[int] = None) -> bytes:
        """Latest version by default; raises NotFound if missing."""
        blob = self._read(key, version)
        if blob is None:
            suffix = f" (version {version})" if version is not None else ""
            raise NotFound(f"No ciphertext stored under {key!r}{suffix}")
        return blob

    def contains(self, key: str) -> bool:
        return self.versions(key) > 0

    def history(self, key: str) -> List[bytes]:
        return [self.get(key, v) for v in range(1, self.versions(key) + 1)]


class InMemoryCiphertextStore(CiphertextStore):
    def __init__(self):
        self._data: Dict[str, List[bytes]] = {}
        self._lock = threading.Lock()

    def _append(self, key: str, blob: bytes) -> int:
        with self._lock:
            versions = self._data.setdefault(key, [])
            versions.append(blob)
            return len(versions)

    def _read(self, key: str, version: Optional[int]) -> Optional[bytes]:
        with self._lock:
            versions = self._data.get(key)
            if not versions:
                return None
            if version is None:
                return versions[-1]
            if 1 <= version <= len(versions):
                return versions[version - 1]
            return None

    def versions(self, key: str) -> int:
        with self._lock:
            return len(self._data.get(key, ()))

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))

    def is_available(self) -> bool:
        return True


class SqlCiphertextStore(CiphertextStore):
    """Ciphertext store persisted through SQLAlchemy.

    Usage:
        store = SqlCiphertextStore("sqlite:///./ciphertexts.db")
        version = store.put("feedback/1/rating", blob)
        latest = store.get("feedback/1/rating")
    """

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL):
        self.database_url = database_url
        self.engine = create_db_engine(database_url)
        self._Session = init_db(self.engine)
        self._lock = threading.Lock()
        logger.info(f"[Store] SQL ciphertext store ready ({self.engine.url.get_backend_name()})")

    def _append(self, key: str, blob: bytes) -> int:
        with self._lock, self._Session() as session:
            current = session.execute(
                select(func.max(CiphertextBlob.version)).where(CiphertextBlob.key == key)
            ).scalar()
            version = (current or 0) + 1
            session.add(CiphertextBlob(key=key, version=version, data=blob))
            session.commit()
            return version

    def _read(self, key: str, version: Optional[int]) -> Optional[bytes]:
        with self._Session() as session:
            query = select(CiphertextBlob.data).where(CiphertextBlob.key == key)
            if version is None:
                query = query.order_by(CiphertextBlob.version.desc()).limit(1)
            else:
                query = query.where(CiphertextBlob.version == version)
            return session.execute(query).scalar()

    def versions(self, key: str) -> int:
        with self._Session() as session:
            return session.execute(
                select(func.count(CiphertextBlob.id)).where(CiphertextBlob.key == key)
            ).scalar() or 0

    def keys(self, prefix: str = "") -> List[str]:
        with self._Session() as session:
            rows = session.execute(
                select(CiphertextBlob.key).distinct().order_by(CiphertextBlob.key)
            ).scalars()
            return [k for k in rows if k.startswith(prefix)]

    def is_available(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"[Store] Database unavailable: {e}")
            return False


def create_store(database_url: Optional[str] = None) -> CiphertextStore:
    """In-memory store when no URL is configured."""
    if database_url:
        return SqlCiphertextStore(database_url)
    return InMemoryCiphertextStore()
