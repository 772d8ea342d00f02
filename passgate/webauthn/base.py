"""Abstract WebAuthn capability interface."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from typing import Any

from passgate.models.domain import CredentialRecord, UsageUpdate

# Options are sent to the browser as-is; server state is parked in the session and must
# be JSON-serialisable.
ChallengeOptions = dict[str, Any]
ServerState = dict[str, Any]


class WebAuthnBase(ABC):
    """Challenge generation and response verification for passkey ceremonies.

    Implementations are synchronous and never touch the credential store; the
    ceremony controller runs them off the event loop.
    """

    @abstractmethod
    def start_registration(
        self,
        user_id: uuid.UUID,
        name: str,
        display_name: str,
        exclude_credential_ids: list[bytes],
    ) -> tuple[ChallengeOptions, ServerState]:
        """Create credential creation options and the state needed to verify them."""

    @abstractmethod
    def finish_registration(
        self, response: dict[str, Any], server_state: ServerState
    ) -> CredentialRecord:
        """Verify an attestation. Raises ``VerificationFailedError`` on rejection."""

    @abstractmethod
    def start_authentication(
        self, allowed_credentials: list[CredentialRecord]
    ) -> tuple[ChallengeOptions, ServerState]:
        """Create assertion request options scoped to ``allowed_credentials``."""

    @abstractmethod
    def finish_authentication(
        self, response: dict[str, Any], server_state: ServerState
    ) -> UsageUpdate:
        """Verify an assertion. Raises ``VerificationFailedError`` on rejection."""
