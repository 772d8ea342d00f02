"""Exception hierarchy for Passgate.

Each error carries the HTTP status the web layer answers with. Nothing here is retried:
a ceremony is single-use, so the client restarts from ``*_start`` after any failure.
"""


class PassgateError(Exception):
    """Base exception for all Passgate errors."""

    status_code = 500


class NotFoundError(PassgateError):
    """Raised when a name, user id, credential or session key is unknown."""

    status_code = 404


class NoCredentialsError(NotFoundError):
    """Raised when a user has no credentials on file."""


class ConflictError(PassgateError):
    """Raised when a name (or credential) already belongs to another identity."""

    status_code = 409


class SessionExpiredError(PassgateError):
    """Raised when the pending ceremony is missing from the session."""

    status_code = 400


class CorruptSessionError(PassgateError):
    """Raised when the pending ceremony cannot be decoded."""

    status_code = 400


class VerificationFailedError(PassgateError):
    """Raised when the WebAuthn capability rejects a ceremony response."""

    status_code = 400


class StoreUnavailableError(PassgateError):
    """Raised when a store lock cannot be acquired in time."""

    status_code = 503


class AnonymousError(PassgateError):
    """Raised when an identity is required but the session is anonymous."""

    status_code = 401


class ConfigError(PassgateError):
    """Raised when configuration is invalid."""
