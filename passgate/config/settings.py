"""Application settings via Pydantic BaseSettings."""

from __future__ import annotations

import warnings
from functools import lru_cache
from urllib.parse import urlparse

from pydantic_settings import BaseSettings

from passgate.exceptions import ConfigError
from passgate.types import TtlExtension, UserVerification


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # App
    secret_key: str = "change-me-in-production"
    debug: bool = False
    log_level: str = "INFO"

    # Relying party
    rp_id: str = "localhost"
    rp_name: str = "Passgate"
    rp_origin: str = "http://localhost:8000"
    user_verification: UserVerification = UserVerification.PREFERRED

    # Sessions
    session_cookie_name: str = "session"
    session_ttl_seconds: int = 86400
    session_ttl_extension: TtlExtension = TtlExtension.ON_STATE_CHANGE
    ceremony_ttl_seconds: int = 300
    identity_max_age_seconds: int = 86400
    store_lock_timeout_seconds: float = 5.0

    logout_redirect_url: str = "/"


def validate_settings(settings: Settings) -> None:
    """Reject relying-party settings a browser would refuse."""
    host = urlparse(settings.rp_origin).hostname or ""
    if host != settings.rp_id and not host.endswith(f".{settings.rp_id}"):
        msg = f"RP_ORIGIN host {host!r} is not within RP_ID {settings.rp_id!r}"
        raise ConfigError(msg)
    if settings.session_ttl_seconds <= 0 or settings.ceremony_ttl_seconds <= 0:
        msg = "SESSION_TTL_SECONDS and CEREMONY_TTL_SECONDS must be positive"
        raise ConfigError(msg)


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    settings = Settings()
    if settings.secret_key == "change-me-in-production":  # nosec B105
        warnings.warn(
            "SECRET_KEY is using the insecure default. "
            "Set SECRET_KEY environment variable for production.",
            UserWarning,
            stacklevel=2,
        )
    validate_settings(settings)
    return settings
