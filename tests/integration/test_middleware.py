"""Server-side session middleware behaviour."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient

from passgate.storage.sessions import InMemorySessionStore
from passgate.types import TtlExtension
from passgate.web.auth.session import Session, get_session, sign_key
from passgate.web.middleware import ServerSessionMiddleware


def _make_app(
    store: InMemorySessionStore,
    ttl_extension: TtlExtension = TtlExtension.ON_STATE_CHANGE,
) -> FastAPI:
    app = FastAPI()
    app.add_middleware(
        ServerSessionMiddleware,
        store=store,
        secret_key="test-secret",
        ttl_seconds=60,
        ttl_extension=ttl_extension,
    )

    @app.post("/write")
    async def write(session: Session = Depends(get_session)) -> dict[str, str | None]:
        session.insert("value", "1")
        return {"key": session.key}

    @app.get("/read")
    async def read(session: Session = Depends(get_session)) -> dict[str, str | None]:
        return {"value": session.get("value")}

    @app.post("/purge")
    async def purge(session: Session = Depends(get_session)) -> dict[str, str]:
        session.purge()
        return {"status": "purged"}

    return app


@pytest.mark.integration
class TestServerSessionMiddleware:
    async def test_no_cookie_until_written(self) -> None:
        store = InMemorySessionStore()
        transport = ASGITransport(app=_make_app(store))
        async with AsyncClient(transport=transport, base_url="https://testserver") as client:
            resp = await client.get("/read")
            assert resp.json() == {"value": None}
            assert "set-cookie" not in resp.headers
        assert len(store) == 0

    async def test_cookie_carries_signed_key_only(self) -> None:
        store = InMemorySessionStore()
        transport = ASGITransport(app=_make_app(store))
        async with AsyncClient(transport=transport, base_url="https://testserver") as client:
            key = (await client.post("/write")).json()["key"]
            assert client.cookies["session"] == sign_key("test-secret", key)
            assert (await client.get("/read")).json() == {"value": "1"}

            cookie = (await client.post("/write")).headers.get("set-cookie")
            assert cookie is None

    async def test_cookie_flags(self) -> None:
        store = InMemorySessionStore()
        transport = ASGITransport(app=_make_app(store))
        async with AsyncClient(transport=transport, base_url="https://testserver") as client:
            cookie = (await client.post("/write")).headers["set-cookie"].lower()
        assert "httponly" in cookie
        assert "secure" in cookie
        assert "samesite=lax" in cookie

    async def test_tampered_cookie_is_anonymous_and_cleared(self) -> None:
        store = InMemorySessionStore()
        key = store.save({"value": "1"}, ttl_seconds=60)
        transport = ASGITransport(app=_make_app(store))
        async with AsyncClient(transport=transport, base_url="https://testserver") as client:
            resp = await client.get("/read", cookies={"session": f"{key}.forged"})
        assert resp.json() == {"value": None}
        assert 'session=""' in resp.headers["set-cookie"] or "max-age=0" in resp.headers[
            "set-cookie"
        ].lower()

    async def test_purge_deletes_cookie_and_state(self) -> None:
        store = InMemorySessionStore()
        transport = ASGITransport(app=_make_app(store))
        async with AsyncClient(transport=transport, base_url="https://testserver") as client:
            key = (await client.post("/write")).json()["key"]
            await client.post("/purge")
            assert "session" not in client.cookies
        assert store.load(key) is None

    async def test_every_request_policy_refreshes_ttl(self) -> None:
        store = InMemorySessionStore()
        transport = ASGITransport(app=_make_app(store, TtlExtension.EVERY_REQUEST))
        async with AsyncClient(transport=transport, base_url="https://testserver") as client:
            await client.post("/write")
            with patch.object(store, "update_ttl", wraps=store.update_ttl) as spy:
                await client.get("/read")
            spy.assert_called_once()

    async def test_state_change_policy_leaves_ttl_alone(self) -> None:
        store = InMemorySessionStore()
        transport = ASGITransport(app=_make_app(store))
        async with AsyncClient(transport=transport, base_url="https://testserver") as client:
            await client.post("/write")
            with patch.object(store, "update_ttl", wraps=store.update_ttl) as spy:
                await client.get("/read")
            spy.assert_not_called()
