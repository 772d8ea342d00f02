"""Identity, credential and pending-ceremony models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Annotated, Any, Literal, TypeVar

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from passgate.exceptions import CorruptSessionError


def _utc_now() -> datetime:
    return datetime.now(UTC)


class User(BaseModel):
    # Names can change; presented credentials may only carry the unique id.
    unique_id: uuid.UUID
    name: str
    display_name: str


class CredentialRecord(BaseModel):
    """A verified authenticator credential as returned by the WebAuthn capability."""

    credential_id: bytes
    public_key: bytes
    sign_count: int = 0
    transports: list[str] = []
    aaguid: str = ""
    device_type: str = "single_device"
    backed_up: bool = False
    created_at: datetime = Field(default_factory=_utc_now)
    last_used_at: datetime | None = None


class UsageUpdate(BaseModel):
    """Per-credential metadata produced by a successful assertion."""

    credential_id: bytes
    sign_count: int
    backed_up: bool = False


class RegistrationPending(BaseModel):
    kind: Literal["registration"] = "registration"
    user: User
    server_state: dict[str, Any]


class AuthenticationPending(BaseModel):
    kind: Literal["authentication"] = "authentication"
    user_id: uuid.UUID
    server_state: dict[str, Any]


PendingCeremony = Annotated[
    RegistrationPending | AuthenticationPending, Field(discriminator="kind")
]

_pending_adapter: TypeAdapter[RegistrationPending | AuthenticationPending] = TypeAdapter(
    PendingCeremony
)

PendingT = TypeVar("PendingT", RegistrationPending, AuthenticationPending)


def decode_pending(raw: str, expected: type[PendingT]) -> PendingT:
    """Decode a parked ceremony, insisting on the expected kind."""
    try:
        pending = _pending_adapter.validate_json(raw)
    except ValidationError as exc:
        msg = "Corrupt session"
        raise CorruptSessionError(msg) from exc
    if not isinstance(pending, expected):
        msg = f"Corrupt session: expected {expected.__name__}, found {pending.kind} ceremony"
        raise CorruptSessionError(msg)
    return pending
