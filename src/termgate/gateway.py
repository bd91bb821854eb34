"""Gateway — drives one terminal websocket connection.

Each connection walks ``INITIALIZING -> CONNECTED -> CLOSED``:

* INITIALIZING: authenticate, resolve the ``project`` query parameter,
  spawn a shell in the project directory and register it. Any failure is
  reported with a single ``error`` envelope and the socket is closed.
* CONNECTED: inbound ``input``/``resize`` envelopes drive the shell, shell
  output flows back as ``data`` envelopes.
* CLOSED: reached when the shell exits (banner, then close the socket) or
  the socket goes away (kill the shell). Either way the registry entry is
  removed; both paths are idempotent.

All outbound traffic goes through one queue drained by one writer task, so
shell output and gateway messages never interleave on the socket.
"""

from __future__ import annotations

import asyncio
import enum
import logging

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from termgate.auth import user_id
from termgate.errors import (
    MalformedFrame,
    ResizeError,
    ResolutionError,
    SpawnError,
    TransportError,
)
from termgate.projects import ProjectResolver
from termgate.pty.manager import SessionKey, SessionManager
from termgate.pty.session import PTYSession
from termgate.wire import (
    DataEnvelope,
    Envelope,
    ErrorEnvelope,
    InputEnvelope,
    ResizeEnvelope,
    UnknownEnvelope,
    decode,
    encode,
)

logger = logging.getLogger(__name__)

CONNECTED_BANNER = "\x1b[32m➜\x1b[0m Connected to terminal in {path}\r\n"
ENDED_BANNER = "\r\n\x1b[31mTerminal session ended\x1b[0m\r\n"


class ConnectionState(enum.Enum):
    INITIALIZING = "initializing"
    CONNECTED = "connected"
    CLOSED = "closed"


class TerminalConnection:
    """Protocol handler for a single websocket.

    Owns at most one :class:`PTYSession` for its whole lifetime.
    """

    def __init__(
        self,
        websocket: WebSocket,
        manager: SessionManager,
        resolver: ProjectResolver,
    ) -> None:
        self.websocket = websocket
        self.manager = manager
        self.resolver = resolver
        self.state = ConnectionState.INITIALIZING
        self.session: PTYSession | None = None
        self.key: SessionKey | None = None
        self._outbox: asyncio.Queue[Envelope | None] = asyncio.Queue()
        self._outbox_closed = False

    async def run(self) -> None:
        """Serve the connection until either side ends it."""
        await self.websocket.accept()
        writer = asyncio.create_task(self._write_loop())
        reader: asyncio.Task[None] | None = None
        try:
            if await self._initialize():
                reader = asyncio.create_task(self._read_loop())
                await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            # The socket is gone or closing; make sure the shell goes with it
            self._on_transport_closed()
            if reader is not None and not reader.done():
                reader.cancel()
                await asyncio.gather(reader, return_exceptions=True)
            await writer

    # ------------------------------------------------------------------
    # INITIALIZING
    # ------------------------------------------------------------------

    async def _initialize(self) -> bool:
        user = user_id(self.websocket)
        if user is None:
            return self._fail("Authentication required")

        project = self.websocket.query_params.get("project")
        if not project:
            return self._fail("No project specified")

        try:
            path = await self.resolver.resolve(project)
            if path is None:
                raise ResolutionError("Project not found")
        except ResolutionError as e:
            logger.info("Rejecting terminal for %r: %s", project, e)
            return self._fail(str(e))
        except Exception as e:
            logger.exception("Project resolution failed for %r", project)
            return self._fail(f"Failed to initialize terminal: {e}")

        key = SessionKey(user, project)
        try:
            session = await self.manager.spawn(key, path)
        except SpawnError as e:
            logger.error("Failed to spawn shell for %s: %s", key, e)
            return self._fail(f"Failed to initialize terminal: {e}")

        self.session = session
        self.key = key
        # No await between spawn and here, so no output can have been read yet
        self._send(DataEnvelope(data=CONNECTED_BANNER.format(path=path)))
        session.on_data(self._on_output)
        session.on_exit(self._on_exit)
        self.state = ConnectionState.CONNECTED
        logger.info("Terminal connected: %s in %s (session %s)", key, path, session.id)
        return True

    def _fail(self, message: str) -> bool:
        self._send(ErrorEnvelope(message=message))
        self.state = ConnectionState.CLOSED
        self._close_outbox()
        return False

    # ------------------------------------------------------------------
    # CONNECTED
    # ------------------------------------------------------------------

    async def _read_loop(self) -> None:
        while True:
            message = await self.websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(
                    "Terminal websocket closed: %s (code=%s)",
                    self.key,
                    message.get("code"),
                )
                return
            frame = message.get("text")
            if frame is None:
                frame = message.get("bytes") or b""
            self.handle_frame(frame)

    def handle_frame(self, frame: str | bytes) -> None:
        """Decode and dispatch one inbound frame. Never raises."""
        try:
            envelope = decode(frame)
        except MalformedFrame as e:
            logger.warning("Dropping malformed frame from %s: %s", self.key, e)
            return

        session = self.session
        if self.state is not ConnectionState.CONNECTED or session is None:
            logger.debug("Ignoring %s frame in state %s", envelope.type, self.state)
            return

        if isinstance(envelope, InputEnvelope):
            session.write(envelope.data)
        elif isinstance(envelope, ResizeEnvelope):
            geometry = envelope.geometry
            if geometry is None:
                logger.debug(
                    "Ignoring resize with invalid geometry: cols=%r rows=%r",
                    envelope.cols,
                    envelope.rows,
                )
                return
            try:
                session.resize(*geometry)
            except ResizeError as e:
                logger.debug("%s", e)
        elif isinstance(envelope, UnknownEnvelope):
            logger.debug("Unknown message type: %s", envelope.type)
        else:
            logger.debug("Unexpected client message type: %s", envelope.type.value)

    def _on_output(self, session: PTYSession, text: str) -> None:
        if self.state is ConnectionState.CONNECTED:
            self._send(DataEnvelope(data=text))

    # ------------------------------------------------------------------
    # CLOSED
    # ------------------------------------------------------------------

    def _on_exit(self, session: PTYSession, exit_code: int | None) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        logger.info("Shell for %s exited (code=%s)", self.key, exit_code)
        self.state = ConnectionState.CLOSED
        self._send(DataEnvelope(data=ENDED_BANNER))
        if self.key is not None:
            self.manager.remove(self.key, session)
        self._close_outbox()

    def _on_transport_closed(self) -> None:
        if self.state is not ConnectionState.CLOSED:
            self.state = ConnectionState.CLOSED
            if self.session is not None:
                self.session.kill()
                if self.key is not None:
                    self.manager.remove(self.key, self.session)
        self._close_outbox()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _send(self, envelope: Envelope) -> None:
        if not self._outbox_closed:
            self._outbox.put_nowait(envelope)

    def _close_outbox(self) -> None:
        if not self._outbox_closed:
            self._outbox_closed = True
            self._outbox.put_nowait(None)

    async def _transmit(self, envelope: Envelope) -> None:
        try:
            await self.websocket.send_text(encode(envelope))
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            raise TransportError(str(e) or type(e).__name__) from e

    async def _write_loop(self) -> None:
        """Sole sender on the socket; closes it after the final envelope."""
        while True:
            envelope = await self._outbox.get()
            if envelope is None:
                break
            try:
                await self._transmit(envelope)
            except TransportError as e:
                logger.info("Terminal websocket send failed for %s: %s", self.key, e)
                return
        if self.websocket.application_state is WebSocketState.CONNECTED:
            try:
                await self.websocket.close()
            except Exception as e:
                logger.debug("Websocket close for %s failed: %s", self.key, e)
