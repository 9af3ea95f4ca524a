"""
Access Control

One administrator identity, fixed at construction, grants and revokes the
"manager" capability. Managers may request reveals; nobody needs a
capability to submit feedback.
"""

import threading
import logging
from typing import Iterable, List, Optional

from fhe_feedback.core.error_handling import Unauthorized
from fhe_feedback.platform.observability.events import EventKind, EventRecorder

logger = logging.getLogger(__name__)


class AccessControl:
    def __init__(
        self,
        admin: str,
        managers: Iterable[str] = (),
        events: Optional[EventRecorder] = None,
    ):
        if not admin or not admin.strip():
            raise ValueError("Administrator identity must not be blank")
        self._admin = admin
        self._managers = {m for m in managers if m and m.strip()}
        self._events = events
        self._lock = threading.Lock()

    @property
    def admin(self) -> str:
        return self._admin

    def is_admin(self, identity: Optional[str]) -> bool:
        return identity == self._admin

    def is_manager(self, identity: Optional[str]) -> bool:
        with self._lock:
            return identity in self._managers

    def managers(self) -> List[str]:
        with self._lock:
            return sorted(self._managers)

    def require_admin(self, caller: Optional[str]):
        if not self.is_admin(caller):
            raise Unauthorized(f"{caller!r} is not the administrator")

    def require_manager(self, caller: Optional[str]):
        if not self.is_manager(caller):
            raise Unauthorized(f"{caller!r} does not hold the manager capability")

    def grant_manager(self, caller: str, identity: str) -> bool:
        """Grant the manager capability. Returns False if already held."""
        self.require_admin(caller)
        if not identity or not identity.strip():
            raise ValueError("Manager identity must not be blank")
        with self._lock:
            if identity in self._managers:
                return False
            self._managers.add(identity)
        logger.info(f"[Access] Manager granted: {identity}")
        if self._events is not None:
            self._events.emit(EventKind.MANAGER_GRANTED, identity=identity)
        return True

    def revoke_manager(self, caller: str, identity: str) -> bool:
        """Revoke the manager capability. Returns False if not held."""
        self.require_admin(caller)
        with self._lock:
            if identity not in self._managers:
                return False
            self._managers.discard(identity)
        logger.info(f"[Access] Manager revoked: {identity}")
        if self._events is not None:
            self._events.emit(EventKind.MANAGER_REVOKED, identity=identity)
        return True
