"""FastAPI application factory."""

from __future__ import annotations

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from passgate.config.logging import setup_logging
from passgate.config.settings import get_settings
from passgate.exceptions import PassgateError
from passgate.models.api import HealthResponse
from passgate.web.dependencies import AppState, build_state, get_state
from passgate.web.health import VERSION, check_health
from passgate.web.middleware import RequestIDMiddleware, ServerSessionMiddleware
from passgate.web.routes.auth import router as auth_router

logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)

    app = FastAPI(
        title="Passgate",
        description="Passkey registration and login ceremonies",
        version=VERSION,
    )
    state = build_state(settings)
    app.state.passgate = state

    @app.exception_handler(PassgateError)
    async def passgate_error_handler(request: Request, exc: PassgateError) -> JSONResponse:
        logger.warning(
            "request_failed",
            path=request.url.path,
            error=type(exc).__name__,
            detail=str(exc),
        )
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    # Last added runs first: request id wraps the session middleware.
    app.add_middleware(
        ServerSessionMiddleware,
        store=state.sessions,
        secret_key=settings.secret_key,
        cookie_name=settings.session_cookie_name,
        ttl_seconds=settings.session_ttl_seconds,
        ttl_extension=settings.session_ttl_extension,
        secure=not settings.debug,
    )
    app.add_middleware(RequestIDMiddleware)

    app.include_router(auth_router)

    @app.get("/api/health")
    async def health_check(app_state: AppState = Depends(get_state)) -> HealthResponse:
        return check_health(app_state)

    logger.info("app_created", rp_id=settings.rp_id, origin=settings.rp_origin)
    return app
