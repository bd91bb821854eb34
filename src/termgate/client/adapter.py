"""Client duplex adapter — a local terminal surface wired to a gateway socket.

On open the adapter reports the surface size, then forwards every key
chunk as an ``input`` envelope and every viewport change as a ``resize``
envelope, while writing ``data`` envelopes to the surface in arrival
order. ``error`` envelopes are shown in red and the surface stays up.

A connection is never resumed: :meth:`TerminalClient.reconnect` clears the
surface and opens a brand new session.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, AsyncContextManager, Callable

import websockets
from websockets.exceptions import (
    ConnectionClosedError,
    ConnectionClosedOK,
    InvalidHandshake,
    InvalidURI,
)

from termgate.client.surface import TerminalSurface
from termgate.errors import MalformedFrame
from termgate.wire import (
    DataEnvelope,
    Envelope,
    ErrorEnvelope,
    InputEnvelope,
    ResizeEnvelope,
    decode,
    encode,
)

logger = logging.getLogger(__name__)

Connector = Callable[[str], AsyncContextManager[Any]]


class DisconnectReason(enum.Enum):
    CLOSED = "closed"  # Server closed the socket (session ended, rejected)
    ERROR = "error"  # Transport failed or never opened
    LOCAL = "local"  # Local input ended


class TerminalClient:
    """Drives one terminal surface against the gateway at ``url``."""

    def __init__(
        self,
        url: str,
        surface: TerminalSurface,
        connect: Connector | None = None,
    ) -> None:
        self.url = url
        self.surface = surface
        self._connect: Connector = connect or websockets.connect
        self.connected = False
        self._local_close = False

    async def run(self) -> DisconnectReason:
        """Hold one connection open until it ends; report why it ended."""
        self._local_close = False
        try:
            async with self._connect(self.url) as ws:
                self.connected = True
                logger.info("Terminal connected to %s", self.url)
                cols, rows = self.surface.size()
                try:
                    await ws.send(encode(ResizeEnvelope(cols=cols, rows=rows)))
                except ConnectionClosedOK:
                    # Rejected before we spoke; the reason is still buffered
                    pass
                pumps = [
                    asyncio.create_task(self._pump_input(ws)),
                    asyncio.create_task(self._pump_resizes(ws)),
                ]
                try:
                    async for message in ws:
                        self.render(message)
                finally:
                    for task in pumps:
                        task.cancel()
                    await asyncio.gather(*pumps, return_exceptions=True)
        except ConnectionClosedError as e:
            logger.warning("Terminal connection error: %s", e)
            self.surface.write_line("\r\n\x1b[31mConnection error\x1b[0m")
            return self._disconnected(DisconnectReason.ERROR)
        except (OSError, InvalidURI, InvalidHandshake, asyncio.TimeoutError) as e:
            logger.warning("Failed to connect terminal to %s: %s", self.url, e)
            self.surface.write_line(f"\r\n\x1b[31mFailed to connect: {e}\x1b[0m")
            return self._disconnected(DisconnectReason.ERROR)

        self.surface.write_line("\r\n\x1b[33mDisconnected\x1b[0m")
        if self._local_close:
            return self._disconnected(DisconnectReason.LOCAL)
        return self._disconnected(DisconnectReason.CLOSED)

    async def reconnect(self) -> DisconnectReason:
        """Start over with a fresh session; nothing from the old one carries over."""
        self.surface.clear()
        return await self.run()

    def _disconnected(self, reason: DisconnectReason) -> DisconnectReason:
        self.connected = False
        logger.info("Terminal disconnected (%s)", reason.value)
        return reason

    def render(self, message: str | bytes) -> None:
        """Apply one inbound frame to the surface."""
        try:
            envelope: Envelope = decode(message)
        except MalformedFrame:
            # Not an envelope; show it as-is
            if isinstance(message, bytes):
                message = message.decode("utf-8", errors="replace")
            self.surface.write(message)
            return

        if isinstance(envelope, DataEnvelope):
            self.surface.write(envelope.data)
        elif isinstance(envelope, ErrorEnvelope):
            self.surface.write_line(f"\r\n\x1b[31mError: {envelope.message}\x1b[0m")
        else:
            logger.debug("Ignoring %s envelope from server", envelope.type)

    async def _pump_input(self, ws: Any) -> None:
        async for chunk in self.surface.input_chunks():
            await ws.send(encode(InputEnvelope(data=chunk)))
        # Local input is exhausted; nothing more to do on this connection
        self._local_close = True
        await ws.close()

    async def _pump_resizes(self, ws: Any) -> None:
        async for cols, rows in self.surface.resizes():
            await ws.send(encode(ResizeEnvelope(cols=cols, rows=rows)))
