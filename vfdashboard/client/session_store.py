"""
Client half of the session store.

Keeps the non-sensitive session metadata (vin, user id, region, expiry) in a
persistent key/value store so a restart does not need a round-trip, with the
gateway's readable `vf_session` cookie as the fallback source. Vendor tokens
are never seen here, they stay in the gateway's HttpOnly cookies.
"""

import logging
import threading
import uuid
from typing import Callable, List, Optional

import jwt

from vfdashboard.application.session_cookies import METADATA_COOKIE
from vfdashboard.domain.models import SessionMetadata, now_ms
from vfdashboard.infrastructure.persistent_store import create_persistent_store

logger = logging.getLogger(__name__)

SESSION_KEY = 'vf_session'

AuthListener = Callable[[bool], None]


def read_metadata_token(token: Optional[str]) -> Optional[SessionMetadata]:
    """Claims of a `vf_session` token without checking the signature (the gateway does)."""
    if not token:
        return None
    try:
        claims = jwt.decode(token, options={'verify_signature': False})
        return SessionMetadata.from_dict(claims)
    except (jwt.InvalidTokenError, KeyError, TypeError, ValueError, AttributeError):
        logger.warning("Unreadable session metadata cookie")
        return None


class SessionStore:
    def __init__(self, persistent_store=None, cookie_jar=None, clock: Callable[[], int] = now_ms):
        self.store = persistent_store if persistent_store is not None else create_persistent_store()
        self.cookie_jar = cookie_jar
        self.clock = clock
        # Identifies writes made through this instance in change events
        self.origin = uuid.uuid4().hex
        self._listeners: List[AuthListener] = []
        self._lock = threading.Lock()
        self._authenticated = False
        self._unsubscribe = self.store.subscribe(self._on_store_change)

    @property
    def is_authenticated(self) -> bool:
        return self.restore_session() is not None

    def save(self, meta: SessionMetadata) -> None:
        self.store.set(SESSION_KEY, meta.to_dict(), origin=self.origin)
        self._set_authenticated(True)

    def restore_session(self, use_cookie: bool = True) -> Optional[SessionMetadata]:
        """
        Current session metadata, or None.

        The persisted record wins; the cookie is only consulted when there is
        no usable record. Expired or corrupt records are purged.
        """
        meta = self._read_record()
        if meta is None and use_cookie:
            meta = self.read_cookie()
            if meta is not None:
                logger.debug("Session metadata restored from cookie")
                self.store.set(SESSION_KEY, meta.to_dict(), origin=self.origin)

        self._set_authenticated(meta is not None)
        return meta

    def read_cookie(self) -> Optional[SessionMetadata]:
        if self.cookie_jar is None:
            return None
        meta = read_metadata_token(self.cookie_jar.get(METADATA_COOKIE))
        if meta is None or meta.is_expired(self.clock()):
            return None
        return meta

    def clear(self) -> None:
        self.store.remove(SESSION_KEY, origin=self.origin)
        if self.cookie_jar is not None:
            self.cookie_jar.set(METADATA_COOKIE, None)
        self._set_authenticated(False)

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """`listener(is_authenticated)` runs whenever the derived state flips."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def close(self) -> None:
        self._unsubscribe()

    def _read_record(self) -> Optional[SessionMetadata]:
        data = self.store.get(SESSION_KEY)
        if data is None:
            return None
        try:
            meta = SessionMetadata.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError):
            logger.warning("Discarding corrupt session metadata record")
            self.store.remove(SESSION_KEY, origin=self.origin)
            return None
        if meta.is_expired(self.clock()):
            logger.info("Session metadata expired, purging")
            self.store.remove(SESSION_KEY, origin=self.origin)
            return None
        return meta

    def _on_store_change(self, key: str, origin: Optional[str]) -> None:
        if key != SESSION_KEY or origin == self.origin:
            return
        # Another tab changed the session; only the shared record counts here,
        # a stale cookie in this jar must not resurrect a logout
        self.restore_session(use_cookie=False)

    def _set_authenticated(self, value: bool) -> None:
        with self._lock:
            changed = value != self._authenticated
            self._authenticated = value
            listeners = list(self._listeners) if changed else []
        for listener in listeners:
            try:
                listener(value)
            except Exception as e:
                logger.error(f"Session listener failed: {e}")
