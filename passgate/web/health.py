"""Health check endpoint logic."""

from __future__ import annotations

import structlog

from passgate.exceptions import StoreUnavailableError
from passgate.models.api import HealthResponse
from passgate.web.dependencies import AppState

logger = structlog.get_logger(__name__)

VERSION = "0.1.0"


def check_health(state: AppState) -> HealthResponse:
    """Return application health status with store probes."""
    try:
        counts = state.credentials.stats()
        sessions = len(state.sessions)
        status = "healthy"
    except StoreUnavailableError as exc:
        logger.warning("health_check_store_busy", error=str(exc))
        counts = {"users": 0, "credentials": 0, "reservations": 0}
        sessions = 0
        status = "degraded"

    return HealthResponse(
        status=status,
        version=VERSION,
        rp_id=state.settings.rp_id,
        sessions=sessions,
        **counts,
    )
