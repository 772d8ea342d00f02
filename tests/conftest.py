"""Shared test fixtures."""

from __future__ import annotations

import itertools
import uuid
from collections import Counter
from collections.abc import Callable
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from passgate.exceptions import VerificationFailedError
from passgate.models.domain import CredentialRecord, UsageUpdate
from passgate.storage.credentials import InMemoryCredentialStore
from passgate.storage.sessions import InMemorySessionStore
from passgate.web.app import create_app
from passgate.web.auth.ceremony import CeremonyController
from passgate.web.auth.identity import IdentityEstablisher
from passgate.web.auth.session import Session
from passgate.webauthn.base import ChallengeOptions, ServerState, WebAuthnBase


class FakeWebAuthn(WebAuthnBase):
    """Deterministic stand-in for the WebAuthn capability.

    Challenges are sequential strings and credential ids travel as hex. A response is
    accepted when it echoes the challenge, names an acceptable credential and does not
    carry ``"valid": False``.
    """

    def __init__(self) -> None:
        self.calls: Counter[str] = Counter()
        self._challenges = itertools.count(1)

    def start_registration(
        self,
        user_id: uuid.UUID,
        name: str,
        display_name: str,
        exclude_credential_ids: list[bytes],
    ) -> tuple[ChallengeOptions, ServerState]:
        self.calls["start_registration"] += 1
        challenge = f"reg-{next(self._challenges)}"
        excluded = [cred_id.hex() for cred_id in exclude_credential_ids]
        options = {
            "challenge": challenge,
            "user": {"id": str(user_id), "name": name, "displayName": display_name},
            "excludeCredentials": [{"id": c, "type": "public-key"} for c in excluded],
        }
        return options, {"challenge": challenge, "exclude": excluded}

    def finish_registration(
        self, response: dict[str, Any], server_state: ServerState
    ) -> CredentialRecord:
        self.calls["finish_registration"] += 1
        if response.get("challenge") != server_state["challenge"] or not response.get(
            "valid", True
        ):
            msg = "Registration verification failed"
            raise VerificationFailedError(msg)
        if response["id"] in server_state["exclude"]:
            msg = "Authenticator already registered"
            raise VerificationFailedError(msg)
        cred_id = bytes.fromhex(response["id"])
        return CredentialRecord(credential_id=cred_id, public_key=b"pk-" + cred_id)

    def start_authentication(
        self, allowed_credentials: list[CredentialRecord]
    ) -> tuple[ChallengeOptions, ServerState]:
        self.calls["start_authentication"] += 1
        challenge = f"auth-{next(self._challenges)}"
        allowed = [c.credential_id.hex() for c in allowed_credentials]
        options = {
            "challenge": challenge,
            "allowCredentials": [{"id": c, "type": "public-key"} for c in allowed],
        }
        return options, {"challenge": challenge, "allowed": allowed}

    def finish_authentication(
        self, response: dict[str, Any], server_state: ServerState
    ) -> UsageUpdate:
        self.calls["finish_authentication"] += 1
        if (
            response.get("challenge") != server_state["challenge"]
            or response.get("id") not in server_state["allowed"]
            or not response.get("valid", True)
        ):
            msg = "Authentication verification failed"
            raise VerificationFailedError(msg)
        return UsageUpdate(
            credential_id=bytes.fromhex(response["id"]),
            sign_count=response.get("counter", 1),
        )

    @staticmethod
    def registration_response(
        options: ChallengeOptions, credential_id: bytes, valid: bool = True
    ) -> dict[str, Any]:
        return {"id": credential_id.hex(), "challenge": options["challenge"], "valid": valid}

    @staticmethod
    def authentication_response(
        options: ChallengeOptions, credential_id: bytes, counter: int = 1, valid: bool = True
    ) -> dict[str, Any]:
        return {
            "id": credential_id.hex(),
            "challenge": options["challenge"],
            "counter": counter,
            "valid": valid,
        }


@pytest.fixture()
def fake_webauthn() -> FakeWebAuthn:
    return FakeWebAuthn()


@pytest.fixture()
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore(reservation_ttl_seconds=60, lock_timeout=1.0)


@pytest.fixture()
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore(lock_timeout=1.0)


@pytest.fixture()
def make_session(session_store: InMemorySessionStore) -> Callable[[], Session]:
    """Factory for fresh anonymous sessions on the shared session store."""

    def _make() -> Session:
        return Session(session_store, key=None, ttl_seconds=3600)

    return _make


@pytest.fixture()
def identity() -> IdentityEstablisher:
    return IdentityEstablisher(max_age_seconds=3600)


@pytest.fixture()
def controller(
    credential_store: InMemoryCredentialStore,
    fake_webauthn: FakeWebAuthn,
    identity: IdentityEstablisher,
) -> CeremonyController:
    return CeremonyController(
        credentials=credential_store,
        webauthn=fake_webauthn,
        identity=identity,
    )


@pytest.fixture()
def app(fake_webauthn: FakeWebAuthn):
    """Create a fresh app instance wired to the fake capability."""
    application = create_app()
    application.state.passgate.webauthn = fake_webauthn
    return application


@pytest.fixture()
async def client(app):
    """An AsyncClient that keeps the session cookie between requests."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="https://testserver") as c:
        yield c
