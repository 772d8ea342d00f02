"""FastAPI middleware: request ID injection and server-side sessions."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from passgate.exceptions import NotFoundError
from passgate.types import TtlExtension
from passgate.web.auth.session import Session, sign_key, unsign_key

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from passgate.storage.sessions import InMemorySessionStore

logger = structlog.get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Adds a unique X-Request-ID header to every response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
        response.headers["x-request-id"] = request_id
        return response


class ServerSessionMiddleware(BaseHTTPMiddleware):
    """Attaches a ``Session`` handle to ``request.state.session``.

    The cookie only carries the HMAC-signed session key; the state itself stays in
    the store. After the handler runs the cookie is set when the key changed and
    deleted when the session was purged or has gone stale.
    """

    def __init__(
        self,
        app: object,
        store: InMemorySessionStore,
        secret_key: str,
        cookie_name: str = "session",
        ttl_seconds: int = 86400,
        ttl_extension: TtlExtension = TtlExtension.ON_STATE_CHANGE,
        secure: bool = True,
    ) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._store = store
        self._secret = secret_key
        self._cookie_name = cookie_name
        self._ttl = ttl_seconds
        self._ttl_extension = ttl_extension
        self._secure = secure

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        cookie = request.cookies.get(self._cookie_name)
        key = unsign_key(self._secret, cookie) if cookie else None
        if key is not None and self._store.load(key) is None:
            key = None

        session = Session(self._store, key, self._ttl)
        request.state.session = session
        response = await call_next(request)

        if session.key is None:
            if cookie:
                response.delete_cookie(self._cookie_name)
        elif session.key != key:
            response.set_cookie(
                key=self._cookie_name,
                value=sign_key(self._secret, session.key),
                httponly=True,
                secure=self._secure,
                samesite="lax",
                max_age=self._ttl,
            )
        elif self._ttl_extension == TtlExtension.EVERY_REQUEST:
            try:
                self._store.update_ttl(session.key, self._ttl)
            except NotFoundError:
                logger.debug("session_expired_before_ttl_refresh")
        return response
