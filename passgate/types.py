"""Enums and type aliases for Passgate."""

from enum import StrEnum


class CeremonyKind(StrEnum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


class TtlExtension(StrEnum):
    ON_STATE_CHANGE = "on_state_change"
    EVERY_REQUEST = "every_request"


class UserVerification(StrEnum):
    REQUIRED = "required"
    PREFERRED = "preferred"
    DISCOURAGED = "discouraged"
