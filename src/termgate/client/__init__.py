"""Terminal client — connects a local terminal to the gateway."""

from termgate.client.adapter import DisconnectReason, TerminalClient
from termgate.client.bootstrap import build_terminal_url, resolve_ws_base, terminal_url
from termgate.client.surface import RawTerminalSurface, TerminalSurface

__all__ = [
    "DisconnectReason",
    "TerminalClient",
    "RawTerminalSurface",
    "TerminalSurface",
    "build_terminal_url",
    "resolve_ws_base",
    "terminal_url",
]
