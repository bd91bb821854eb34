"""PTY process management — shells attached to pseudo-terminals.

Each terminal connection owns one shell running in its own process group.
The :class:`SessionManager` keeps at most one live shell per
(user, project) and kills everything on shutdown.
"""

from termgate.pty.session import PTYSession, PTYStatus
from termgate.pty.manager import SessionKey, SessionManager, terminal_environment

__all__ = [
    "PTYSession",
    "PTYStatus",
    "SessionKey",
    "SessionManager",
    "terminal_environment",
]
