"""Configuration — Pydantic models for termgate settings."""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    """Gateway server configuration."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=3001)
    shell: str | None = Field(
        default=None,
        description="Shell binary for new sessions. Falls back to $SHELL, then bash.",
    )
    projects_root: str = Field(
        default="~/projects",
        description="Directory whose immediate subdirectories are the projects",
    )
    public_ws_url: str | None = Field(
        default=None,
        description=(
            "Websocket base URL advertised by /api/config. "
            "Derived from the request host when unset."
        ),
    )
    tokens: dict[str, str] = Field(
        default_factory=dict,
        description="Accepted credentials: token -> user id",
    )
    anonymous_user: str | None = Field(
        default=None,
        description=(
            "User id given to requests without a valid token. "
            "Unset means such requests are rejected."
        ),
    )


class ClientConfig(BaseModel):
    """Terminal client configuration."""

    server_url: str = Field(default="http://127.0.0.1:3001")
    token: str | None = Field(default=None)


class TermgateConfig(BaseModel):
    """Top-level termgate configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> TermgateConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            TERMGATE_HOST            - Address the server binds to
            TERMGATE_PORT            - Port the server binds to
            TERMGATE_SHELL           - Shell binary for new sessions
            TERMGATE_PROJECTS_ROOT   - Directory holding the projects
            TERMGATE_PUBLIC_WS_URL   - Websocket base URL advertised to clients
            TERMGATE_TOKENS          - Accepted credentials, "token:user,token:user"
            TERMGATE_ANONYMOUS_USER  - User id for requests without a valid token
            TERMGATE_SERVER_URL      - Server the client connects to
            TERMGATE_TOKEN           - Credential the client presents
        """
        try:
            from dotenv import load_dotenv

            load_dotenv(override=True)
        except ImportError:
            pass

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            import json

            with open(config_path) as f:
                config_data = json.load(f)

        server = config_data.get("server", {})
        client = config_data.get("client", {})

        env_host = os.environ.get("TERMGATE_HOST")
        if env_host:
            server["host"] = env_host

        env_port = os.environ.get("TERMGATE_PORT")
        if env_port:
            server["port"] = int(env_port)

        env_shell = os.environ.get("TERMGATE_SHELL")
        if env_shell:
            server["shell"] = env_shell

        env_projects_root = os.environ.get("TERMGATE_PROJECTS_ROOT")
        if env_projects_root:
            server["projects_root"] = env_projects_root

        env_public_ws_url = os.environ.get("TERMGATE_PUBLIC_WS_URL")
        if env_public_ws_url:
            server["public_ws_url"] = env_public_ws_url

        env_tokens = os.environ.get("TERMGATE_TOKENS")
        if env_tokens:
            server["tokens"] = parse_token_table(env_tokens)

        env_anonymous_user = os.environ.get("TERMGATE_ANONYMOUS_USER")
        if env_anonymous_user:
            server["anonymous_user"] = env_anonymous_user

        env_server_url = os.environ.get("TERMGATE_SERVER_URL")
        if env_server_url:
            client["server_url"] = env_server_url

        env_token = os.environ.get("TERMGATE_TOKEN")
        if env_token:
            client["token"] = env_token

        if server:
            config_data["server"] = server
        if client:
            config_data["client"] = client

        return cls.model_validate(config_data)


def parse_token_table(raw: str) -> dict[str, str]:
    """Parse ``"tok1:alice,tok2:bob"`` into ``{"tok1": "alice", ...}``.

    Entries without a colon or with an empty side are skipped.
    """
    table: dict[str, str] = {}
    for entry in raw.split(","):
        token, sep, user = entry.strip().partition(":")
        if sep and token and user:
            table[token] = user
    return table
