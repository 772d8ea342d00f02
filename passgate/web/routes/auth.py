"""Authentication routes: passkey registration, login, identity and logout."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import PlainTextResponse, RedirectResponse

from passgate.audit.logger import audit
from passgate.models.api import LoginStartRequest, RegisterStartRequest
from passgate.models.domain import User
from passgate.web.auth.ceremony import CeremonyController
from passgate.web.auth.identity import IdentityEstablisher
from passgate.web.auth.session import Session, get_session
from passgate.web.dependencies import (
    AppState,
    get_controller,
    get_identity_establisher,
    get_state,
    require_user,
)

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["auth"])


def _client(request: Request) -> dict[str, str]:
    return {
        "ip_address": request.client.host if request.client else "",
        "request_id": request.headers.get("x-request-id", ""),
    }


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@router.get("/", response_class=PlainTextResponse)
async def index(
    session: Session = Depends(get_session),
    identity: IdentityEstablisher = Depends(get_identity_establisher),
) -> str:
    unique_id = identity.current(session)
    return f"Hello {unique_id}" if unique_id else "Hello Anonymous!"


@router.get("/identity")
async def get_identity(user: User = Depends(require_user)) -> User:
    """Return the user bound to this session."""
    return user


@router.get("/logout")
async def logout(
    request: Request,
    session: Session = Depends(get_session),
    state: AppState = Depends(get_state),
) -> RedirectResponse:
    """Clear the identity binding and send the browser home."""
    user_id = state.identity.current(session)
    state.identity.logout(session)
    audit(action="auth.logout", user_id=str(user_id or ""), **_client(request))
    return RedirectResponse(url=state.settings.logout_redirect_url, status_code=303)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post("/register_start")
async def register_start(
    body: RegisterStartRequest,
    session: Session = Depends(get_session),
    controller: CeremonyController = Depends(get_controller),
) -> dict[str, Any]:
    """Begin passkey registration for ``name``."""
    logger.info("register_start", name=body.name)
    caller_id = controller.identity.current(session)
    return await controller.start_registration(
        session,
        name=body.name,
        display_name=body.display_name,
        caller_id=caller_id,
    )


@router.post("/register_finish")
async def register_finish(
    request: Request,
    credential: dict[str, Any] = Body(...),
    session: Session = Depends(get_session),
    controller: CeremonyController = Depends(get_controller),
) -> User:
    """Verify the attestation, store the passkey and log the user in."""
    user = await controller.finish_registration(session, credential)
    audit(
        action="auth.register",
        user_id=str(user.unique_id),
        details={"name": user.name},
        **_client(request),
    )
    return user


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@router.post("/login_start")
async def login_start(
    body: LoginStartRequest,
    session: Session = Depends(get_session),
    controller: CeremonyController = Depends(get_controller),
) -> dict[str, Any]:
    """Begin passkey authentication for ``name``."""
    logger.info("login_start", name=body.name)
    return await controller.start_authentication(session, name=body.name)


@router.post("/login_finish")
async def login_finish(
    request: Request,
    credential: dict[str, Any] = Body(...),
    session: Session = Depends(get_session),
    controller: CeremonyController = Depends(get_controller),
) -> User:
    """Verify the assertion and log the user in."""
    user = await controller.finish_authentication(session, credential)
    audit(action="auth.login", user_id=str(user.unique_id), **_client(request))
    return user
