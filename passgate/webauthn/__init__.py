"""WebAuthn capability: challenge generation and response verification."""

from __future__ import annotations

from typing import TYPE_CHECKING

from passgate.webauthn.base import WebAuthnBase
from passgate.webauthn.py_webauthn import PyWebAuthn

if TYPE_CHECKING:
    from passgate.config.settings import Settings


def create_webauthn(settings: Settings) -> WebAuthnBase:
    """Create the production WebAuthn capability from settings."""
    return PyWebAuthn(
        rp_id=settings.rp_id,
        rp_name=settings.rp_name,
        origin=settings.rp_origin,
        user_verification=settings.user_verification,
    )


__all__ = ["PyWebAuthn", "WebAuthnBase", "create_webauthn"]
