"""FastAPI dependency injection and shared state."""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from fastapi import Depends, Request

from passgate.config.settings import Settings
from passgate.exceptions import AnonymousError
from passgate.models.domain import User
from passgate.storage.credentials import InMemoryCredentialStore
from passgate.storage.sessions import InMemorySessionStore
from passgate.web.auth.ceremony import CeremonyController
from passgate.web.auth.identity import IdentityEstablisher
from passgate.web.auth.session import Session, get_session
from passgate.webauthn import WebAuthnBase, create_webauthn

logger = structlog.get_logger(__name__)


@dataclass
class AppState:
    """Process-wide collaborators, hung off ``app.state.passgate``."""

    settings: Settings
    credentials: InMemoryCredentialStore
    sessions: InMemorySessionStore
    webauthn: WebAuthnBase
    identity: IdentityEstablisher


def build_state(settings: Settings) -> AppState:
    """Create the stores and capability for one application instance."""
    return AppState(
        settings=settings,
        credentials=InMemoryCredentialStore(
            reservation_ttl_seconds=settings.ceremony_ttl_seconds,
            lock_timeout=settings.store_lock_timeout_seconds,
        ),
        sessions=InMemorySessionStore(lock_timeout=settings.store_lock_timeout_seconds),
        webauthn=create_webauthn(settings),
        identity=IdentityEstablisher(max_age_seconds=settings.identity_max_age_seconds),
    )


def get_state(request: Request) -> AppState:
    return request.app.state.passgate


def get_controller(state: AppState = Depends(get_state)) -> CeremonyController:
    return CeremonyController(
        credentials=state.credentials,
        webauthn=state.webauthn,
        identity=state.identity,
    )


def get_identity_establisher(state: AppState = Depends(get_state)) -> IdentityEstablisher:
    return state.identity


def require_user(
    state: AppState = Depends(get_state),
    session: Session = Depends(get_session),
) -> User:
    """Resolve the caller's bound identity or reject the request as anonymous."""
    unique_id = state.identity.current(session)
    if unique_id is None:
        msg = "Not logged in"
        raise AnonymousError(msg)
    return state.credentials.get_user(unique_id)
