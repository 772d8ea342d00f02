"""Concurrent registrations racing for the same name."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any
from unittest.mock import patch

import pytest

from passgate.exceptions import ConflictError
from passgate.storage.credentials import InMemoryCredentialStore
from passgate.web.auth.ceremony import CeremonyController
from passgate.web.auth.session import Session


def _owners(store: InMemoryCredentialStore, name: str) -> set[Any]:
    owner = store.lookup_id(name)
    return {owner} if owner is not None else set()


@pytest.mark.unit
class TestRaceForName:
    async def test_simultaneous_starts_admit_one(
        self,
        controller: CeremonyController,
        fake_webauthn: Any,
        credential_store: InMemoryCredentialStore,
        make_session: Callable[[], Session],
    ) -> None:
        sessions = [make_session() for _ in range(8)]
        results = await asyncio.gather(
            *(controller.start_registration(s, "carol", "Carol") for s in sessions),
            return_exceptions=True,
        )

        started = [(s, r) for s, r in zip(sessions, results, strict=True) if isinstance(r, dict)]
        rejected = [r for r in results if isinstance(r, ConflictError)]
        assert len(started) == 1
        assert len(rejected) == 7

        session, options = started[0]
        user = await controller.finish_registration(
            session, fake_webauthn.registration_response(options, b"carol-1")
        )
        assert _owners(credential_store, "carol") == {user.unique_id}

    async def test_second_start_rejected_while_first_pending(
        self,
        controller: CeremonyController,
        fake_webauthn: Any,
        credential_store: InMemoryCredentialStore,
        make_session: Callable[[], Session],
    ) -> None:
        first, second = make_session(), make_session()
        options = await controller.start_registration(first, "carol", "Carol")
        with pytest.raises(ConflictError):
            await controller.start_registration(second, "carol", "Carol Two")

        user = await controller.finish_registration(
            first, fake_webauthn.registration_response(options, b"carol-1")
        )
        assert _owners(credential_store, "carol") == {user.unique_id}

    async def test_stale_ceremony_finishing_last_conflicts(
        self,
        controller: CeremonyController,
        fake_webauthn: Any,
        credential_store: InMemoryCredentialStore,
        make_session: Callable[[], Session],
    ) -> None:
        first, second = make_session(), make_session()
        stale_options = await controller.start_registration(first, "carol", "Carol")

        # First hold lapses, so the second caller is handed a different id.
        with patch.object(time, "time", return_value=time.time() + 120):
            fresh_options = await controller.start_registration(second, "carol", "Carol")
            winner = await controller.finish_registration(
                second, fake_webauthn.registration_response(fresh_options, b"carol-2")
            )
            with pytest.raises(ConflictError):
                await controller.finish_registration(
                    first, fake_webauthn.registration_response(stale_options, b"carol-1")
                )

            assert _owners(credential_store, "carol") == {winner.unique_id}
            assert [
                c.credential_id for c in credential_store.get_credentials(winner.unique_id)
            ] == [b"carol-2"]

    async def test_stale_ceremony_finishing_first_conflicts(
        self,
        controller: CeremonyController,
        fake_webauthn: Any,
        credential_store: InMemoryCredentialStore,
        make_session: Callable[[], Session],
    ) -> None:
        first, second = make_session(), make_session()
        stale_options = await controller.start_registration(first, "carol", "Carol")

        with patch.object(time, "time", return_value=time.time() + 120):
            fresh_options = await controller.start_registration(second, "carol", "Carol")
            with pytest.raises(ConflictError):
                await controller.finish_registration(
                    first, fake_webauthn.registration_response(stale_options, b"carol-1")
                )
            winner = await controller.finish_registration(
                second, fake_webauthn.registration_response(fresh_options, b"carol-2")
            )

            assert _owners(credential_store, "carol") == {winner.unique_id}
            assert credential_store.stats()["users"] == 1

    async def test_concurrent_finishes_for_different_names(
        self,
        controller: CeremonyController,
        fake_webauthn: Any,
        credential_store: InMemoryCredentialStore,
        make_session: Callable[[], Session],
    ) -> None:
        names = [f"user{i}" for i in range(10)]
        sessions = {name: make_session() for name in names}
        options = {
            name: await controller.start_registration(sessions[name], name, name)
            for name in names
        }

        users = await asyncio.gather(
            *(
                controller.finish_registration(
                    sessions[name],
                    fake_webauthn.registration_response(options[name], name.encode()),
                )
                for name in names
            )
        )

        assert {u.name for u in users} == set(names)
        assert credential_store.stats() == {
            "users": 10,
            "credentials": 10,
            "reservations": 0,
        }
