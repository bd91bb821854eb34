"""Tests for termgate.config."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from termgate.config import TermgateConfig, parse_token_table

ENV_VARS = [
    "TERMGATE_HOST",
    "TERMGATE_PORT",
    "TERMGATE_SHELL",
    "TERMGATE_PROJECTS_ROOT",
    "TERMGATE_PUBLIC_WS_URL",
    "TERMGATE_TOKENS",
    "TERMGATE_ANONYMOUS_USER",
    "TERMGATE_SERVER_URL",
    "TERMGATE_TOKEN",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_defaults(self) -> None:
        config = TermgateConfig.load()
        assert config.server.host == "127.0.0.1"
        assert config.server.port == 3001
        assert config.server.shell is None
        assert config.server.tokens == {}
        assert config.server.anonymous_user is None
        assert config.client.server_url == "http://127.0.0.1:3001"
        assert config.client.token is None


class TestLoad:
    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "termgate.json"
        path.write_text(
            json.dumps(
                {
                    "server": {"port": 9000, "tokens": {"t1": "alice"}},
                    "client": {"token": "t1"},
                }
            )
        )
        config = TermgateConfig.load(str(path))
        assert config.server.port == 9000
        assert config.server.tokens == {"t1": "alice"}
        assert config.client.token == "t1"

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        config = TermgateConfig.load(str(tmp_path / "nope.json"))
        assert config.server.port == 3001

    def test_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "termgate.json"
        path.write_text(json.dumps({"server": {"port": 9000, "shell": "/bin/zsh"}}))
        monkeypatch.setenv("TERMGATE_PORT", "9100")
        monkeypatch.setenv("TERMGATE_TOKENS", "a:alice,b:bob")
        monkeypatch.setenv("TERMGATE_ANONYMOUS_USER", "guest")
        monkeypatch.setenv("TERMGATE_SERVER_URL", "https://term.example.com")
        config = TermgateConfig.load(str(path))
        assert config.server.port == 9100
        assert config.server.shell == "/bin/zsh"
        assert config.server.tokens == {"a": "alice", "b": "bob"}
        assert config.server.anonymous_user == "guest"
        assert config.client.server_url == "https://term.example.com"


class TestParseTokenTable:
    def test_pairs(self) -> None:
        assert parse_token_table("a:alice, b:bob") == {"a": "alice", "b": "bob"}

    def test_skips_bad_entries(self) -> None:
        assert parse_token_table("a:alice,broken,:nobody,c:,") == {"a": "alice"}

    def test_user_may_contain_colon(self) -> None:
        assert parse_token_table("a:team:alice") == {"a": "team:alice"}
