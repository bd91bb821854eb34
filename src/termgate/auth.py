"""Token authentication for HTTP and websocket requests.

The credential comes from the ``token`` query parameter (browsers can't set
headers on a websocket handshake) or an ``Authorization: Bearer`` header.
Verified requests carry ``request.user`` with the user id as
``display_name``; everything else gets Starlette's ``UnauthenticatedUser``.
"""

from __future__ import annotations

import logging

from starlette.authentication import (
    AuthCredentials,
    AuthenticationBackend,
    BaseUser,
    SimpleUser,
)
from starlette.requests import HTTPConnection

logger = logging.getLogger(__name__)


def extract_token(conn: HTTPConnection) -> str | None:
    token = conn.query_params.get("token")
    if token:
        return token
    scheme, _, value = conn.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return None


class TokenAuthBackend(AuthenticationBackend):
    """Looks credentials up in a static ``{token: user}`` table.

    With ``anonymous_user`` set, requests without a known token are let in
    under that id instead of being left unauthenticated.
    """

    def __init__(self, tokens: dict[str, str], anonymous_user: str | None = None) -> None:
        self._tokens = dict(tokens)
        self._anonymous_user = anonymous_user

    async def authenticate(
        self, conn: HTTPConnection
    ) -> tuple[AuthCredentials, BaseUser] | None:
        token = extract_token(conn)
        user = self._tokens.get(token) if token is not None else None
        if user is None:
            if token is not None:
                logger.info("Rejected unknown token from %s", conn.client)
            if self._anonymous_user is None:
                return None
            user = self._anonymous_user
        return AuthCredentials(["authenticated"]), SimpleUser(user)


def user_id(conn: HTTPConnection) -> str | None:
    """The verified user id attached to ``conn``, if any."""
    if "user" not in conn.scope:
        return None
    user = conn.user
    if not user.is_authenticated:
        return None
    return user.display_name
