"""In-memory credential registry: usernames, users and their passkeys.

All state sits behind one exclusive lock and every public method is a single critical
section. Name allocation (``reserve``) and the final claim (``append_credential``) are
compound operations so that check and write never happen under separate acquisitions.
Nothing in here calls the WebAuthn capability; callers get copies back and verify
outside the lock.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import structlog

from passgate.exceptions import (
    ConflictError,
    NoCredentialsError,
    NotFoundError,
    StoreUnavailableError,
)
from passgate.models.domain import CredentialRecord, UsageUpdate, User, _utc_now

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Reservation:
    """Outcome of a name allocation: who to register and what to exclude."""

    user: User
    exclude_credential_ids: list[bytes]
    is_new: bool


@dataclass
class _Hold:
    unique_id: uuid.UUID
    holder: str
    expires_at: float


class InMemoryCredentialStore:
    """Process-local credential store. Lost on restart."""

    def __init__(self, reservation_ttl_seconds: int = 300, lock_timeout: float = 5.0) -> None:
        self._reservation_ttl = reservation_ttl_seconds
        self._lock_timeout = lock_timeout
        self._lock = threading.Lock()
        self._name_to_id: dict[str, uuid.UUID] = {}
        self._users: dict[uuid.UUID, User] = {}
        self._keys: dict[uuid.UUID, list[CredentialRecord]] = {}
        self._credential_owner: dict[bytes, uuid.UUID] = {}
        self._holds: dict[str, _Hold] = {}

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self._lock_timeout):
            msg = "Credential store is busy"
            raise StoreUnavailableError(msg)
        try:
            yield
        finally:
            self._lock.release()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def lookup_id(self, name: str) -> uuid.UUID | None:
        """Resolve a name to its owner, or to the id of a live reservation."""
        with self._locked():
            owner = self._name_to_id.get(name)
            if owner is not None:
                return owner
            hold = self._live_hold(name)
            return hold.unique_id if hold else None

    def get_credentials(self, unique_id: uuid.UUID) -> list[CredentialRecord]:
        with self._locked():
            if unique_id not in self._keys:
                msg = f"Unknown user id {unique_id}"
                raise NotFoundError(msg)
            return [c.model_copy() for c in self._keys[unique_id]]

    def get_user(self, unique_id: uuid.UUID) -> User:
        with self._locked():
            user = self._users.get(unique_id)
            if user is None:
                msg = f"Unknown user id {unique_id}"
                raise NotFoundError(msg)
            return user.model_copy()

    # ------------------------------------------------------------------
    # Name allocation
    # ------------------------------------------------------------------

    def reserve(
        self,
        name: str,
        display_name: str,
        caller_id: uuid.UUID | None,
        holder: str,
    ) -> Reservation:
        """Decide who registering ``name`` would be, and hold the name if it is free.

        * unused name: a fresh id is allocated and held for ``holder``
        * name held by the same ``holder``: the held id is reused
        * name owned by ``caller_id``: the stored user is reused (another authenticator)
        * anything else: ``ConflictError``
        """
        with self._locked():
            self._purge_expired_holds()
            owner = self._name_to_id.get(name)
            if owner is not None:
                if caller_id is None or owner != caller_id:
                    msg = "Username is already taken"
                    raise ConflictError(msg)
                existing = [c.credential_id for c in self._keys.get(owner, [])]
                # Adding an authenticator never renames the account.
                user = self._users[owner].model_copy()
                return Reservation(user=user, exclude_credential_ids=existing, is_new=False)

            hold = self._holds.get(name)
            if hold is not None:
                if hold.holder != holder:
                    msg = "Username is already taken"
                    raise ConflictError(msg)
                hold.expires_at = time.time() + self._reservation_ttl
                user = User(unique_id=hold.unique_id, name=name, display_name=display_name)
                return Reservation(user=user, exclude_credential_ids=[], is_new=True)

            unique_id = uuid.uuid4()
            self._holds[name] = _Hold(
                unique_id=unique_id,
                holder=holder,
                expires_at=time.time() + self._reservation_ttl,
            )
            self._keys.setdefault(unique_id, [])
            logger.debug("name_reserved", name=name, unique_id=str(unique_id))
            user = User(unique_id=unique_id, name=name, display_name=display_name)
            return Reservation(user=user, exclude_credential_ids=[], is_new=True)

    def release(self, name: str, unique_id: uuid.UUID) -> None:
        """Drop the hold on ``name`` if it still belongs to ``unique_id``."""
        with self._locked():
            hold = self._holds.get(name)
            if hold is not None and hold.unique_id == unique_id:
                self._drop_hold(name)
                logger.debug("name_released", name=name, unique_id=str(unique_id))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def append_credential(self, user: User, credential: CredentialRecord) -> None:
        """Claim ``user.name`` for ``user.unique_id`` and add the credential."""
        with self._locked():
            self._purge_expired_holds()
            owner = self._name_to_id.get(user.name)
            if owner is not None and owner != user.unique_id:
                msg = "Username is already taken"
                raise ConflictError(msg)
            hold = self._holds.get(user.name)
            if hold is not None and hold.unique_id != user.unique_id:
                msg = "Username is already taken"
                raise ConflictError(msg)
            if credential.credential_id in self._credential_owner:
                msg = "Credential is already registered"
                raise ConflictError(msg)

            if hold is not None:
                del self._holds[user.name]
            self._name_to_id[user.name] = user.unique_id
            self._users[user.unique_id] = user.model_copy()
            self._keys.setdefault(user.unique_id, []).append(credential.model_copy())
            self._credential_owner[credential.credential_id] = user.unique_id
            logger.info(
                "credential_appended",
                unique_id=str(user.unique_id),
                credentials=len(self._keys[user.unique_id]),
            )

    def update_credential(self, unique_id: uuid.UUID, usage: UsageUpdate) -> None:
        """Apply usage metadata to the one credential matching ``usage.credential_id``."""
        with self._locked():
            keys = self._keys.get(unique_id)
            if not keys:
                msg = "User has no credentials"
                raise NoCredentialsError(msg)
            for index, credential in enumerate(keys):
                if credential.credential_id == usage.credential_id:
                    keys[index] = credential.model_copy(
                        update={
                            "sign_count": usage.sign_count,
                            "backed_up": usage.backed_up,
                            "last_used_at": _utc_now(),
                        }
                    )
                    return
            msg = "Credential not found for user"
            raise NotFoundError(msg)

    def stats(self) -> dict[str, int]:
        with self._locked():
            return {
                "users": len(self._users),
                "credentials": len(self._credential_owner),
                "reservations": len(self._holds),
            }

    # ------------------------------------------------------------------
    # Helpers (lock held)
    # ------------------------------------------------------------------

    def _live_hold(self, name: str) -> _Hold | None:
        hold = self._holds.get(name)
        if hold is None or time.time() > hold.expires_at:
            return None
        return hold

    def _drop_hold(self, name: str) -> None:
        hold = self._holds.pop(name)
        if not self._keys.get(hold.unique_id):
            self._keys.pop(hold.unique_id, None)

    def _purge_expired_holds(self) -> None:
        now = time.time()
        expired = [name for name, hold in self._holds.items() if now > hold.expires_at]
        for name in expired:
            self._drop_hold(name)
