"""WebAuthn ceremony orchestration: registration and authentication.

Each ceremony is a two-step state machine (``Idle -> Started -> Finished | Aborted``)
whose middle state is parked in the caller's server-side session:

* ``start`` discards any pending ceremony of the same kind, asks the WebAuthn
  capability for a challenge, and stores the server half of the ceremony.
* ``finish`` takes the pending state out of the session before verifying, so a
  response can be checked at most once. Any failure after that point means the client
  has to call ``start`` again.

Store locks are never held while the capability runs; it gets copies of store data
and runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import secrets
import uuid
from typing import TYPE_CHECKING, Any

import structlog

from passgate.exceptions import (
    CorruptSessionError,
    NoCredentialsError,
    NotFoundError,
    SessionExpiredError,
)
from passgate.models.domain import (
    AuthenticationPending,
    RegistrationPending,
    User,
    decode_pending,
)
from passgate.types import CeremonyKind

if TYPE_CHECKING:
    from passgate.storage.credentials import InMemoryCredentialStore
    from passgate.web.auth.identity import IdentityEstablisher
    from passgate.web.auth.session import Session
    from passgate.webauthn.base import ChallengeOptions, WebAuthnBase

logger = structlog.get_logger(__name__)

SESSION_FIELDS = {
    CeremonyKind.REGISTRATION: "reg_state",
    CeremonyKind.AUTHENTICATION: "auth_state",
}

# Stable per-session owner of name holds; survives key renewal on login.
HOLDER_FIELD = "reg_holder"


def _take_pending(session: Session, kind: CeremonyKind) -> str:
    raw = session.remove(SESSION_FIELDS[kind])
    if raw is None:
        msg = "Session missing"
        raise SessionExpiredError(msg)
    return raw


class RegistrationCeremony:
    """Enrols a passkey for a new name, or an extra passkey for the caller's own name."""

    def __init__(
        self,
        credentials: InMemoryCredentialStore,
        webauthn: WebAuthnBase,
        identity: IdentityEstablisher,
    ) -> None:
        self._credentials = credentials
        self._webauthn = webauthn
        self._identity = identity

    async def start(
        self,
        session: Session,
        name: str,
        display_name: str,
        caller_id: uuid.UUID | None = None,
    ) -> ChallengeOptions:
        field = SESSION_FIELDS[CeremonyKind.REGISTRATION]
        superseded = session.remove(field)
        if superseded is not None:
            self._abandon(superseded, keep_name=name)

        reservation = self._credentials.reserve(
            name=name,
            display_name=display_name,
            caller_id=caller_id,
            holder=session.setdefault(HOLDER_FIELD, secrets.token_urlsafe(16)),
        )
        user = reservation.user
        try:
            options, server_state = await asyncio.to_thread(
                self._webauthn.start_registration,
                user.unique_id,
                user.name,
                user.display_name,
                reservation.exclude_credential_ids,
            )
        except Exception:
            self._credentials.release(user.name, user.unique_id)
            raise

        pending = RegistrationPending(user=user, server_state=server_state)
        session.insert(field, pending.model_dump_json())
        logger.info(
            "registration_started",
            name=name,
            unique_id=str(user.unique_id),
            new_user=reservation.is_new,
            excluded=len(reservation.exclude_credential_ids),
        )
        return options

    async def finish(self, session: Session, response: dict[str, Any]) -> User:
        raw = _take_pending(session, CeremonyKind.REGISTRATION)
        pending = decode_pending(raw, RegistrationPending)
        user = pending.user

        try:
            credential = await asyncio.to_thread(
                self._webauthn.finish_registration, response, pending.server_state
            )
            self._credentials.append_credential(user, credential)
        except Exception:
            self._credentials.release(user.name, user.unique_id)
            raise

        self._identity.establish(session, user.unique_id)
        logger.info("registration_finished", name=user.name, unique_id=str(user.unique_id))
        return user

    def _abandon(self, raw: str, keep_name: str) -> None:
        """Release the name held by a superseded ceremony unless it is being restarted."""
        try:
            old = decode_pending(raw, RegistrationPending)
        except CorruptSessionError:
            logger.warning("registration_superseded_unreadable")
            return
        logger.info("registration_superseded", name=old.user.name, restarted=keep_name)
        if old.user.name != keep_name:
            self._credentials.release(old.user.name, old.user.unique_id)


class AuthenticationCeremony:
    """Logs a user in with one of the passkeys registered to their name."""

    def __init__(
        self,
        credentials: InMemoryCredentialStore,
        webauthn: WebAuthnBase,
        identity: IdentityEstablisher,
    ) -> None:
        self._credentials = credentials
        self._webauthn = webauthn
        self._identity = identity

    async def start(self, session: Session, name: str) -> ChallengeOptions:
        field = SESSION_FIELDS[CeremonyKind.AUTHENTICATION]
        if session.remove(field) is not None:
            logger.info("authentication_superseded", name=name)

        unique_id = self._credentials.lookup_id(name)
        if unique_id is None:
            msg = "User not found"
            raise NotFoundError(msg)
        allowed = self._credentials.get_credentials(unique_id)
        if not allowed:
            msg = "User has no credentials"
            raise NoCredentialsError(msg)

        options, server_state = await asyncio.to_thread(
            self._webauthn.start_authentication, allowed
        )
        pending = AuthenticationPending(user_id=unique_id, server_state=server_state)
        session.insert(field, pending.model_dump_json())
        logger.info("authentication_started", name=name, allowed=len(allowed))
        return options

    async def finish(self, session: Session, response: dict[str, Any]) -> User:
        raw = _take_pending(session, CeremonyKind.AUTHENTICATION)
        pending = decode_pending(raw, AuthenticationPending)

        usage = await asyncio.to_thread(
            self._webauthn.finish_authentication, response, pending.server_state
        )
        self._credentials.update_credential(pending.user_id, usage)
        user = self._credentials.get_user(pending.user_id)
        self._identity.establish(session, user.unique_id)
        logger.info("authentication_finished", unique_id=str(user.unique_id))
        return user


class CeremonyController:
    """Entry point used by the routes; owns one state machine per ceremony kind."""

    def __init__(
        self,
        credentials: InMemoryCredentialStore,
        webauthn: WebAuthnBase,
        identity: IdentityEstablisher,
    ) -> None:
        self.registration = RegistrationCeremony(credentials, webauthn, identity)
        self.authentication = AuthenticationCeremony(credentials, webauthn, identity)
        self.identity = identity

    async def start_registration(
        self,
        session: Session,
        name: str,
        display_name: str,
        caller_id: uuid.UUID | None = None,
    ) -> ChallengeOptions:
        return await self.registration.start(session, name, display_name, caller_id)

    async def finish_registration(self, session: Session, response: dict[str, Any]) -> User:
        return await self.registration.finish(session, response)

    async def start_authentication(self, session: Session, name: str) -> ChallengeOptions:
        return await self.authentication.start(session, name)

    async def finish_authentication(self, session: Session, response: dict[str, Any]) -> User:
        return await self.authentication.finish(session, response)
