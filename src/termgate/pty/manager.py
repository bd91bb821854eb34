"""Session manager — the registry of live shells keyed by (user, project)."""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping, NamedTuple

from termgate.pty.session import DEFAULT_COLS, DEFAULT_ROWS, PTYSession

logger = logging.getLogger(__name__)

DEFAULT_SHELL = "bash"


class SessionKey(NamedTuple):
    user: str
    project: str

    def __str__(self) -> str:
        return f"{self.user}-{self.project}"


def terminal_environment(base: Mapping[str, str] | None = None) -> dict[str, str]:
    """Build the shell environment.

    Everything (USER, HOME, PATH included) is inherited; only the terminal
    capability variables are forced.
    """
    env = dict(os.environ if base is None else base)
    env["TERM"] = "xterm-256color"
    env["COLORTERM"] = "truecolor"
    return env


def default_shell(configured: str | None = None) -> str:
    return configured or os.environ.get("SHELL") or DEFAULT_SHELL


class SessionManager:
    """Tracks one live PTY session per (user, project).

    Created once per server and shared by every connection handler. All
    access happens on the event loop thread, so there is no locking.

    A second spawn for an occupied key kills the previous shell before
    registering the new one (kill-then-replace). The old connection sees
    its shell exit and closes.
    """

    def __init__(self, shell: str | None = None, env: Mapping[str, str] | None = None) -> None:
        self._sessions: dict[SessionKey, PTYSession] = {}
        self.shell = default_shell(shell)
        self._base_env = env

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def put(self, key: SessionKey, session: PTYSession) -> None:
        previous = self._sessions.get(key)
        if previous is not None and previous is not session:
            logger.warning(
                "Session %s already has a live shell (%s), replacing it",
                key,
                previous.id,
            )
            previous.kill()
        self._sessions[key] = session

    def get(self, key: SessionKey) -> PTYSession | None:
        return self._sessions.get(key)

    def remove(self, key: SessionKey, session: PTYSession | None = None) -> PTYSession | None:
        """Drop the entry for ``key``.

        With ``session`` given, only drop it if it is still the registered
        one, so cleanup of a replaced shell can't evict its successor.
        Removing a missing key is a no-op.
        """
        current = self._sessions.get(key)
        if current is None:
            return None
        if session is not None and current is not session:
            return None
        del self._sessions[key]
        logger.debug("Removed session %s (%s)", key, current.id)
        return current

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def spawn(
        self,
        key: SessionKey,
        cwd: str,
        cols: int = DEFAULT_COLS,
        rows: int = DEFAULT_ROWS,
    ) -> PTYSession:
        """Start a shell in ``cwd`` and register it under ``key``.

        Raises:
            SpawnError: the shell could not be started. Nothing is
                registered and any previous session is left untouched.
        """
        session = PTYSession(
            command=[self.shell],
            cwd=cwd,
            env=terminal_environment(self._base_env),
            cols=cols,
            rows=rows,
        )
        session.start()
        self.put(key, session)
        session.on_exit(lambda s, _code: self.remove(key, s))
        return session

    async def kill(self, key: SessionKey) -> None:
        """Kill the session for ``key`` and stop tracking it."""
        session = self._sessions.pop(key, None)
        if session:
            session.kill()

    def list_sessions(self) -> list[dict[str, Any]]:
        """List all live sessions."""
        return [
            {
                "id": s.id,
                "user": key.user,
                "project": key.project,
                "cwd": s.cwd,
                "pid": s.pid,
                "cols": s.cols,
                "rows": s.rows,
                "status": s.status.value,
            }
            for key, s in self._sessions.items()
        ]

    async def cleanup(self) -> None:
        """Kill all sessions. Called on shutdown."""
        for key in list(self._sessions.keys()):
            await self.kill(key)
        logger.info("All PTY sessions cleaned up")

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: object) -> bool:
        return key in self._sessions
