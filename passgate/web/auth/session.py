"""Request-scoped session handle and signed session cookies."""

from __future__ import annotations

import hashlib
import hmac

import structlog
from fastapi import Request

from passgate.exceptions import NotFoundError
from passgate.storage.sessions import InMemorySessionStore, SessionState

logger = structlog.get_logger(__name__)


def sign_key(secret: str, key: str) -> str:
    """Append an HMAC signature to a session key for use as a cookie value."""
    return f"{key}.{_sign(secret, key)}"


def unsign_key(secret: str, value: str) -> str | None:
    """Return the session key if the cookie signature is valid."""
    if not value or "." not in value:
        return None
    key, signature = value.rsplit(".", 1)
    if not hmac.compare_digest(signature, _sign(secret, key)):
        return None
    return key


def _sign(secret: str, data: str) -> str:
    return hmac.new(secret.encode(), data.encode(), hashlib.sha256).hexdigest()[:32]


class Session:
    """One request's view of its server-side session.

    Every operation goes straight to the store, so two requests on the same session
    never overwrite each other's fields and ``remove`` is an atomic take. The key is
    created lazily on first write; ``renew`` and ``purge`` change it, and the session
    middleware reflects that in the cookie.
    """

    def __init__(self, store: InMemorySessionStore, key: str | None, ttl_seconds: int) -> None:
        self._store = store
        self._key = key
        self._ttl = ttl_seconds
        self._purged = False

    @property
    def key(self) -> str | None:
        return self._key

    @property
    def purged(self) -> bool:
        return self._purged

    def get(self, field: str) -> str | None:
        if self._key is None:
            return None
        state = self._store.load(self._key)
        return state.get(field) if state else None

    def insert(self, field: str, value: str) -> None:
        def _set(state: SessionState) -> None:
            state[field] = value

        if self._key is not None:
            try:
                self._store.modify(self._key, _set, self._ttl)
                return
            except NotFoundError:
                logger.debug("session_expired_on_write", field=field)
        self._key = self._store.save({field: value}, self._ttl)
        self._purged = False

    def setdefault(self, field: str, value: str) -> str:
        """Return ``field``, storing ``value`` first if it is unset."""
        if self._key is not None:
            try:
                return self._store.modify(
                    self._key, lambda state: state.setdefault(field, value), self._ttl
                )
            except NotFoundError:
                logger.debug("session_expired_on_write", field=field)
        self._key = self._store.save({field: value}, self._ttl)
        self._purged = False
        return value

    def remove(self, field: str) -> str | None:
        """Atomically take ``field`` out of the session."""
        if self._key is None:
            return None
        try:
            return self._store.modify(self._key, lambda state: state.pop(field, None), self._ttl)
        except NotFoundError:
            return None

    def renew(self) -> None:
        """Move the state to a fresh key and drop the old one."""
        state: SessionState = {}
        if self._key is not None:
            state = self._store.load(self._key) or {}
            self._discard(self._key)
        self._key = self._store.save(state, self._ttl)
        self._purged = False

    def purge(self) -> None:
        """Delete the session entirely."""
        if self._key is not None:
            self._discard(self._key)
            self._purged = True
        self._key = None

    def _discard(self, key: str) -> None:
        try:
            self._store.delete(key)
        except NotFoundError:
            logger.debug("session_already_gone")


def get_session(request: Request) -> Session:
    """FastAPI dependency: the handle attached by ``ServerSessionMiddleware``."""
    return request.state.session
