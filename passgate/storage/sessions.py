"""Server-side session state storage with TTL expiry."""

from __future__ import annotations

import secrets
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

import structlog

from passgate.exceptions import NotFoundError, StoreUnavailableError

logger = structlog.get_logger(__name__)

SessionState = dict[str, str]

T = TypeVar("T")


class InMemorySessionStore:
    """Stores session state under unguessable keys.

    Keys come from ``secrets`` and are never sequential. Expired entries read as absent
    and are swept lazily on ``save``. State only ever leaves the store as a copy.
    """

    def __init__(self, lock_timeout: float = 5.0) -> None:
        self._lock = threading.Lock()
        self._lock_timeout = lock_timeout
        self._store: dict[str, tuple[SessionState, float]] = {}  # key -> (state, expires_at)

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self._lock_timeout):
            msg = "Session store is busy"
            raise StoreUnavailableError(msg)
        try:
            yield
        finally:
            self._lock.release()

    def load(self, key: str) -> SessionState | None:
        """Return a copy of the state, or None if missing or expired."""
        with self._locked():
            state = self._live(key)
            return dict(state) if state is not None else None

    def save(self, state: SessionState, ttl_seconds: int) -> str:
        """Store new state and return its freshly generated key."""
        with self._locked():
            self._cleanup()
            key = secrets.token_urlsafe(32)
            while key in self._store:
                key = secrets.token_urlsafe(32)
            self._store[key] = (dict(state), time.time() + ttl_seconds)
        logger.debug("session_saved", fields=sorted(state))
        return key

    def update(self, key: str, state: SessionState, ttl_seconds: int) -> None:
        """Replace the state under ``key`` and restart its TTL."""
        with self._locked():
            self._require(key)
            self._store[key] = (dict(state), time.time() + ttl_seconds)

    def update_ttl(self, key: str, ttl_seconds: int) -> None:
        with self._locked():
            state = self._require(key)
            self._store[key] = (state, time.time() + ttl_seconds)

    def delete(self, key: str) -> None:
        with self._locked():
            self._require(key)
            del self._store[key]
        logger.debug("session_deleted")

    def modify(self, key: str, fn: Callable[[SessionState], T], ttl_seconds: int) -> T:
        """Apply ``fn`` to the live state in one critical section.

        ``fn`` mutates the state in place and its return value is passed back, which
        makes read-and-remove of a single field atomic.
        """
        with self._locked():
            state = self._require(key)
            result = fn(state)
            self._store[key] = (state, time.time() + ttl_seconds)
            return result

    def __len__(self) -> int:
        with self._locked():
            now = time.time()
            return sum(1 for _, exp in self._store.values() if now <= exp)

    def _live(self, key: str) -> SessionState | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        state, expires_at = entry
        if time.time() > expires_at:
            del self._store[key]
            return None
        return state

    def _require(self, key: str) -> SessionState:
        state = self._live(key)
        if state is None:
            msg = "Session not found"
            raise NotFoundError(msg)
        return state

    def _cleanup(self) -> None:
        """Remove expired entries."""
        now = time.time()
        expired = [k for k, (_, exp) in self._store.items() if now > exp]
        for k in expired:
            del self._store[k]
