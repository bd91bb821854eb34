"""Tests for the HTTP side of termgate.server and termgate.auth."""

from __future__ import annotations

from pathlib import Path

import pytest
from starlette.requests import HTTPConnection
from starlette.testclient import TestClient

from termgate.auth import TokenAuthBackend, extract_token
from termgate.config import ServerConfig, TermgateConfig
from termgate.projects import StaticProjectResolver
from termgate.pty.manager import SessionKey, SessionManager
from termgate.server import create_app


def _app(tmp_path: Path, **server: object) -> tuple[TestClient, SessionManager]:
    manager = SessionManager(shell="/bin/sh")
    config = TermgateConfig(server=ServerConfig(tokens={"secret": "alice"}, **server))
    app = create_app(
        config,
        resolver=StaticProjectResolver({"demo": str(tmp_path)}),
        manager=manager,
    )
    return TestClient(app), manager


def _conn(query: str = "", headers: dict[str, str] | None = None) -> HTTPConnection:
    raw_headers = [
        (k.lower().encode(), v.encode()) for k, v in (headers or {}).items()
    ]
    return HTTPConnection(
        {
            "type": "http",
            "path": "/",
            "query_string": query.encode(),
            "headers": raw_headers,
        }
    )


# ---------------------------------------------------------------------------
# /api/config
# ---------------------------------------------------------------------------


class TestConfigEndpoint:
    def test_requires_auth(self, tmp_path: Path) -> None:
        client, _ = _app(tmp_path)
        with client:
            assert client.get("/api/config").status_code == 403

    def test_derived_from_host(self, tmp_path: Path) -> None:
        client, _ = _app(tmp_path)
        with client:
            resp = client.get("/api/config", headers={"Authorization": "Bearer secret"})
        assert resp.status_code == 200
        assert resp.json() == {"wsUrl": "ws://testserver"}

    def test_token_in_query(self, tmp_path: Path) -> None:
        client, _ = _app(tmp_path)
        with client:
            resp = client.get("/api/config?token=secret")
        assert resp.status_code == 200

    def test_public_url_configured(self, tmp_path: Path) -> None:
        client, _ = _app(tmp_path, public_ws_url="wss://term.example.com")
        with client:
            resp = client.get("/api/config?token=secret")
        assert resp.json() == {"wsUrl": "wss://term.example.com"}


# ---------------------------------------------------------------------------
# /api/terminals
# ---------------------------------------------------------------------------


class TestTerminalsEndpoint:
    def test_lists_only_own_sessions(self, tmp_path: Path) -> None:
        client, manager = _app(tmp_path)
        with client:
            client.portal.call(manager.spawn, SessionKey("alice", "demo"), str(tmp_path))
            client.portal.call(manager.spawn, SessionKey("bob", "demo"), str(tmp_path))
            resp = client.get("/api/terminals?token=secret")
        terminals = resp.json()["terminals"]
        assert [t["user"] for t in terminals] == ["alice"]
        assert terminals[0]["project"] == "demo"


# ---------------------------------------------------------------------------
# TokenAuthBackend
# ---------------------------------------------------------------------------


class TestExtractToken:
    def test_query(self) -> None:
        assert extract_token(_conn("token=abc")) == "abc"

    def test_bearer(self) -> None:
        assert extract_token(_conn(headers={"Authorization": "Bearer abc"})) == "abc"

    def test_query_wins(self) -> None:
        conn = _conn("token=q", headers={"Authorization": "Bearer h"})
        assert extract_token(conn) == "q"

    def test_other_scheme(self) -> None:
        assert extract_token(_conn(headers={"Authorization": "Basic abc"})) is None

    def test_none(self) -> None:
        assert extract_token(_conn()) is None


class TestTokenAuthBackend:
    async def test_known_token(self) -> None:
        result = await TokenAuthBackend({"abc": "alice"}).authenticate(_conn("token=abc"))
        assert result is not None
        creds, user = result
        assert "authenticated" in creds.scopes
        assert user.display_name == "alice"

    @pytest.mark.parametrize("query", ["", "token=nope"])
    async def test_rejected(self, query: str) -> None:
        backend = TokenAuthBackend({"abc": "alice"})
        assert await backend.authenticate(_conn(query)) is None

    @pytest.mark.parametrize("query", ["", "token=nope"])
    async def test_anonymous_fallback(self, query: str) -> None:
        backend = TokenAuthBackend({"abc": "alice"}, anonymous_user="guest")
        result = await backend.authenticate(_conn(query))
        assert result is not None
        assert result[1].display_name == "guest"
