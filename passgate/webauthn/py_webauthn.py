"""WebAuthn capability backed by the py_webauthn library."""

from __future__ import annotations

import json
import uuid
from typing import Any

import structlog
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.exceptions import InvalidAuthenticationResponse, WebAuthnException
from webauthn.helpers.structs import (
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from passgate.exceptions import VerificationFailedError
from passgate.models.domain import CredentialRecord, UsageUpdate
from passgate.types import UserVerification
from passgate.webauthn.base import ChallengeOptions, ServerState, WebAuthnBase

logger = structlog.get_logger(__name__)

# Every py_webauthn failure derives from WebAuthnException; the builtins come from
# malformed client JSON reaching the parsers.
_REJECTIONS = (WebAuthnException, KeyError, TypeError, ValueError)


class PyWebAuthn(WebAuthnBase):
    """Relying-party operations for one ``rp_id``/origin pair."""

    def __init__(
        self,
        rp_id: str,
        rp_name: str,
        origin: str,
        user_verification: UserVerification = UserVerification.PREFERRED,
        timeout_ms: int = 60000,
    ) -> None:
        self._rp_id = rp_id
        self._rp_name = rp_name
        self._origin = origin
        self._user_verification = UserVerificationRequirement(str(user_verification))
        self._timeout_ms = timeout_ms

    @property
    def _require_uv(self) -> bool:
        return self._user_verification == UserVerificationRequirement.REQUIRED

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def start_registration(
        self,
        user_id: uuid.UUID,
        name: str,
        display_name: str,
        exclude_credential_ids: list[bytes],
    ) -> tuple[ChallengeOptions, ServerState]:
        options = generate_registration_options(
            rp_id=self._rp_id,
            rp_name=self._rp_name,
            user_id=user_id.bytes,
            user_name=name,
            user_display_name=display_name,
            timeout=self._timeout_ms,
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.PREFERRED,
                user_verification=self._user_verification,
            ),
            exclude_credentials=[
                PublicKeyCredentialDescriptor(id=cred_id) for cred_id in exclude_credential_ids
            ],
        )
        state = {"challenge": bytes_to_base64url(options.challenge)}
        return json.loads(options_to_json(options)), state

    def finish_registration(
        self, response: dict[str, Any], server_state: ServerState
    ) -> CredentialRecord:
        try:
            verified = verify_registration_response(
                credential=response,
                expected_challenge=base64url_to_bytes(server_state["challenge"]),
                expected_rp_id=self._rp_id,
                expected_origin=self._origin,
                require_user_verification=self._require_uv,
            )
        except _REJECTIONS as exc:
            logger.warning("registration_verification_failed", error=str(exc))
            msg = "Registration verification failed"
            raise VerificationFailedError(msg) from exc

        transports = response.get("response", {}).get("transports") or []
        return CredentialRecord(
            credential_id=verified.credential_id,
            public_key=verified.credential_public_key,
            sign_count=verified.sign_count,
            transports=[str(t) for t in transports],
            aaguid=str(verified.aaguid) if verified.aaguid else "",
            device_type=str(verified.credential_device_type.value),
            backed_up=bool(verified.credential_backed_up),
        )

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def start_authentication(
        self, allowed_credentials: list[CredentialRecord]
    ) -> tuple[ChallengeOptions, ServerState]:
        options = generate_authentication_options(
            rp_id=self._rp_id,
            timeout=self._timeout_ms,
            allow_credentials=[
                PublicKeyCredentialDescriptor(
                    id=c.credential_id,
                    transports=_parse_transports(c.transports),
                )
                for c in allowed_credentials
            ],
            user_verification=self._user_verification,
        )
        # Verification runs against this snapshot, never against the live store.
        state = {
            "challenge": bytes_to_base64url(options.challenge),
            "credentials": [
                {
                    "id": bytes_to_base64url(c.credential_id),
                    "public_key": bytes_to_base64url(c.public_key),
                    "sign_count": c.sign_count,
                }
                for c in allowed_credentials
            ],
        }
        return json.loads(options_to_json(options)), state

    def finish_authentication(
        self, response: dict[str, Any], server_state: ServerState
    ) -> UsageUpdate:
        try:
            raw_id = response.get("rawId") or response.get("id") or ""
            allowed = {c["id"]: c for c in server_state["credentials"]}
            stored = allowed.get(bytes_to_base64url(base64url_to_bytes(raw_id)))
            if stored is None:
                msg = "Credential is not in the allow list"
                raise InvalidAuthenticationResponse(msg)

            verified = verify_authentication_response(
                credential=response,
                expected_challenge=base64url_to_bytes(server_state["challenge"]),
                expected_rp_id=self._rp_id,
                expected_origin=self._origin,
                credential_public_key=base64url_to_bytes(stored["public_key"]),
                credential_current_sign_count=stored["sign_count"],
                require_user_verification=self._require_uv,
            )
        except _REJECTIONS as exc:
            logger.warning("authentication_verification_failed", error=str(exc))
            msg = "Authentication verification failed"
            raise VerificationFailedError(msg) from exc

        return UsageUpdate(
            credential_id=verified.credential_id,
            sign_count=verified.new_sign_count,
            backed_up=bool(verified.credential_backed_up),
        )


def _parse_transports(transports: list[str]) -> list[AuthenticatorTransport]:
    """Convert stored transport strings, skipping values the library does not know."""
    result: list[AuthenticatorTransport] = []
    for t in transports:
        try:
            result.append(AuthenticatorTransport(t))
        except ValueError:
            continue
    return result
