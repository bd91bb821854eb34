"""Exception types for the terminal gateway.

Initialization failures (:class:`ResolutionError`, :class:`SpawnError`) are
reported to the client once and end the connection. Everything else is
recovered locally and only logged.
"""

from __future__ import annotations


class TermgateError(Exception):
    """Base class for all termgate errors."""


class ResolutionError(TermgateError):
    """The requested project could not be mapped to a directory."""


class SpawnError(TermgateError):
    """The shell process could not be started."""


class ResizeError(TermgateError):
    """Geometry change requested on a dead PTY."""


class WriteAfterExit(TermgateError):
    """Input was sent to a PTY whose process has already exited."""


class MalformedFrame(TermgateError):
    """An inbound frame could not be decoded into an envelope."""


class TransportError(TermgateError):
    """The websocket failed underneath an open connection."""
