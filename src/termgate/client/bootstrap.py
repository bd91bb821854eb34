"""Connection bootstrap — work out which websocket URL to open.

The server advertises its websocket base at ``GET /api/config``. When that
can't be fetched, or it points at localhost while we reached the server by
another name (a reverse proxy in front of it), the base is derived from the
server URL instead.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode, urlsplit

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

TERMINAL_PATH = "/terminal"


def derive_ws_base(server_url: str) -> str:
    """``http://host:port/...`` -> ``ws://host:port`` (https -> wss)."""
    parts = urlsplit(server_url)
    scheme = "wss" if parts.scheme in ("https", "wss") else "ws"
    return f"{scheme}://{parts.netloc}"


def build_terminal_url(ws_base: str, project: str, token: str | None = None) -> str:
    params = {"project": project}
    if token:
        params = {"token": token, **params}
    return f"{ws_base.rstrip('/')}{TERMINAL_PATH}?{urlencode(params)}"


@retry(
    retry=retry_if_exception_type(httpx.TransportError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def fetch_ws_base(
    server_url: str,
    token: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Ask the server for its websocket base URL."""
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    async with httpx.AsyncClient(
        base_url=server_url, transport=transport, timeout=5.0
    ) as client:
        response = await client.get("/api/config", headers=headers)
        response.raise_for_status()
        ws_url = response.json()["wsUrl"]
    if not isinstance(ws_url, str) or not ws_url:
        raise ValueError(f"Invalid wsUrl in server config: {ws_url!r}")
    return ws_url


async def resolve_ws_base(
    server_url: str,
    token: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """The websocket base URL to use for ``server_url``. Never raises."""
    fallback = derive_ws_base(server_url)
    try:
        ws_url = await fetch_ws_base(server_url, token, transport=transport)
    except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
        logger.warning("Could not fetch websocket config, using %s: %s", fallback, e)
        return fallback

    server_host = urlsplit(server_url).hostname or ""
    if "localhost" in ws_url and "localhost" not in server_host:
        logger.debug("Server advertised %s; using %s instead", ws_url, fallback)
        return fallback
    return ws_url.rstrip("/")


async def terminal_url(server_url: str, project: str, token: str | None = None) -> str:
    """Full websocket URL for a terminal on ``project``."""
    return build_terminal_url(await resolve_ws_base(server_url, token), project, token)
