"""Binding a transport session to a verified user id."""

from __future__ import annotations

import json
import time
import uuid

import structlog

from passgate.web.auth.session import Session

logger = structlog.get_logger(__name__)

IDENTITY_FIELD = "identity"


class IdentityEstablisher:
    """Marks a session as authenticated after a successful ceremony."""

    def __init__(self, max_age_seconds: int = 86400) -> None:
        self._max_age = max_age_seconds

    def establish(self, session: Session, unique_id: uuid.UUID) -> None:
        """Bind ``session`` to ``unique_id`` under a fresh session key."""
        session.renew()
        session.insert(
            IDENTITY_FIELD,
            json.dumps({"user_id": str(unique_id), "logged_in_at": time.time()}),
        )
        logger.info("identity_established", user_id=str(unique_id))

    def current(self, session: Session) -> uuid.UUID | None:
        """Return the bound user id, or None for an anonymous session."""
        raw = session.get(IDENTITY_FIELD)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            unique_id = uuid.UUID(data["user_id"])
            logged_in_at = float(data["logged_in_at"])
        except (ValueError, KeyError, TypeError):
            logger.warning("identity_corrupt")
            session.remove(IDENTITY_FIELD)
            return None

        if time.time() - logged_in_at > self._max_age:
            logger.info("identity_expired", user_id=str(unique_id))
            session.remove(IDENTITY_FIELD)
            return None
        return unique_id

    def logout(self, session: Session) -> None:
        """Clear the binding along with the rest of the session. Safe to repeat."""
        session.purge()
        logger.info("identity_cleared")
