"""PTY session — one shell process attached to a pseudo-terminal."""

from __future__ import annotations

import asyncio
import codecs
import enum
import fcntl
import logging
import os
import pty
import select
import signal
import struct
import subprocess
import termios
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable

from termgate.errors import ResizeError, SpawnError, WriteAfterExit

logger = logging.getLogger(__name__)

DataCallback = Callable[["PTYSession", str], None]
ExitCallback = Callable[["PTYSession", "int | None"], None]

DEFAULT_COLS = 80
DEFAULT_ROWS = 30
READ_CHUNK = 4096
# How long output may keep arriving after the shell itself has exited
EXIT_GRACE = 0.1


class PTYStatus(enum.Enum):
    """Lifecycle states for a PTY session."""

    PENDING = "pending"  # Not started yet
    RUNNING = "running"
    KILLING = "killing"  # Kill in progress
    KILLED = "killed"  # Killed by us (SIGKILL)
    EXITED = "exited"  # Process exited on its own


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(): make the PTY slave (fd 0) the
    # controlling terminal so job control and SIGWINCH work.
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


@dataclass
class PTYSession:
    """A shell process running on a PTY, driven from the asyncio loop.

    Output is pushed: the master fd is registered with ``loop.add_reader``
    and every chunk is handed to the ``on_data`` callbacks in the order it
    was read. Exit is reported exactly once through ``on_exit``, whether the
    process ended on its own or was killed.

    ``write`` never raises; ``resize`` raises :class:`ResizeError` on a dead
    session; ``kill`` is idempotent.
    """

    command: list[str] = field(default_factory=lambda: ["bash"])
    cwd: str = field(default_factory=os.getcwd)
    env: dict[str, str] = field(default_factory=dict)
    cols: int = DEFAULT_COLS
    rows: int = DEFAULT_ROWS
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])

    # Internal state
    _master_fd: int = field(default=-1, init=False)
    _proc: subprocess.Popen | None = field(default=None, init=False)
    _pgid: int = field(default=0, init=False)
    _status: PTYStatus = field(default=PTYStatus.PENDING, init=False)
    _loop: asyncio.AbstractEventLoop | None = field(default=None, init=False)
    _data_callbacks: list[DataCallback] = field(default_factory=list, init=False)
    _exit_callbacks: list[ExitCallback] = field(default_factory=list, init=False)
    _exit_code: int | None = field(default=None, init=False)
    _hung_up: bool = field(default=False, init=False)
    _reaped: bool = field(default=False, init=False)
    _reap_code: int | None = field(default=None, init=False)
    _exit_notified: bool = field(default=False, init=False)
    _exited: asyncio.Event | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def on_data(self, callback: DataCallback) -> None:
        """Register a callback for each decoded output chunk."""
        self._data_callbacks.append(callback)

    def on_exit(self, callback: ExitCallback) -> None:
        """Register a callback fired once when the session dies.

        If the session is already dead the callback runs immediately.
        """
        if self._exit_notified:
            callback(self, self._exit_code)
            return
        self._exit_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Spawn the process on a new PTY with its own process group.

        Must be called from the event loop thread.

        Raises:
            SpawnError: ``cwd`` is not a directory or the command can't run.
        """
        if self._status is not PTYStatus.PENDING:
            raise SpawnError(f"PTY session {self.id} was already started")
        if not os.path.isdir(self.cwd):
            raise SpawnError(f"Working directory does not exist: {self.cwd}")

        loop = asyncio.get_running_loop()
        master_fd, slave_fd = pty.openpty()
        self._set_winsize(master_fd, self.cols, self.rows)

        try:
            # Popen rather than os.fork: forking from inside a running
            # event loop can deadlock on some platforms.
            self._proc = subprocess.Popen(
                self.command,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                preexec_fn=_acquire_controlling_tty,
                env=self.env or None,
                cwd=self.cwd,
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            raise SpawnError(f"Cannot execute {self.command[0]!r}: {e}") from e
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        self._master_fd = master_fd
        self._pgid = os.getpgid(self._proc.pid)
        self._loop = loop
        self._exited = asyncio.Event()
        self._status = PTYStatus.RUNNING
        loop.add_reader(master_fd, self._on_readable)
        # Exit is tracked on the child itself: a background job can keep
        # the slave side open long after the shell is gone.
        threading.Thread(
            target=self._wait_child,
            name=f"pty-wait-{self.id}",
            daemon=True,
        ).start()

        logger.info(
            "PTY session %s started: pid=%d pgid=%d cwd=%s cmd=%s",
            self.id,
            self._proc.pid,
            self._pgid,
            self.cwd,
            " ".join(self.command),
        )

    def _on_readable(self) -> None:
        try:
            chunk = os.read(self._master_fd, READ_CHUNK)
        except OSError:
            # EIO once every slave fd is closed
            chunk = b""

        if not chunk:
            self._on_hangup()
            return

        text = self._decoder.decode(chunk)
        if text:
            self._emit(text)

    def _emit(self, text: str) -> None:
        for callback in list(self._data_callbacks):
            try:
                callback(self, text)
            except Exception:
                logger.exception("Error in on_data callback for session %s", self.id)

    def _on_hangup(self) -> None:
        """The PTY is finished: flush the decoder and close the master."""
        if self._hung_up:
            return
        self._hung_up = True
        if self._status is PTYStatus.RUNNING:
            self._status = PTYStatus.EXITED
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._emit(tail)
        self._release_fd()
        self._maybe_finish()

    def _drain(self) -> None:
        """Read whatever output is already queued on the master."""
        for _ in range(64):
            if self._master_fd < 0:
                return
            try:
                ready, _, _ = select.select([self._master_fd], [], [], 0)
                if not ready:
                    return
                chunk = os.read(self._master_fd, READ_CHUNK)
            except OSError:
                return
            if not chunk:
                return
            text = self._decoder.decode(chunk)
            if text:
                self._emit(text)

    def _force_hangup(self) -> None:
        if self._hung_up:
            return
        logger.debug("PTY session %s: slave still held open, closing master", self.id)
        self._drain()
        self._on_hangup()

    # ------------------------------------------------------------------
    # Reaping
    # ------------------------------------------------------------------

    def _wait_child(self) -> None:
        """Watcher thread: block until the child exits, then hand over to the loop."""
        assert self._proc is not None and self._loop is not None
        code = self._proc.wait()
        try:
            self._loop.call_soon_threadsafe(self._on_child_exit, code)
        except RuntimeError:
            logger.debug("Loop closed before PTY session %s was reaped", self.id)

    def _on_child_exit(self, code: int) -> None:
        self._reaped = True
        self._reap_code = code
        logger.info("PTY session %s exited (code=%s)", self.id, code)
        if not self._hung_up:
            assert self._loop is not None
            # Output written just before exit may still be in flight
            self._loop.call_later(EXIT_GRACE, self._force_hangup)
        self._maybe_finish()

    def _maybe_finish(self) -> None:
        if not (self._hung_up and self._reaped):
            return
        if self._status is PTYStatus.EXITED:
            self._signal_group("leftover")
        self._notify_exit(self._reap_code)

    def _signal_group(self, reason: str) -> None:
        try:
            os.killpg(self._pgid, signal.SIGKILL)
            logger.info("Killed PTY session %s group (pgid=%d, %s)", self.id, self._pgid, reason)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)
        except OSError as e:
            logger.warning("Error killing PTY session %s: %s", self.id, e)

    def _notify_exit(self, code: int | None) -> None:
        if self._exit_notified:
            return
        self._exit_notified = True
        self._exit_code = code
        if self._exited is not None:
            self._exited.set()
        callbacks, self._exit_callbacks = self._exit_callbacks, []
        self._data_callbacks.clear()
        for callback in callbacks:
            try:
                callback(self, code)
            except Exception:
                logger.exception("Error in on_exit callback for session %s", self.id)

    def _release_fd(self) -> None:
        if self._master_fd < 0:
            return
        if self._loop is not None:
            self._loop.remove_reader(self._master_fd)
        try:
            os.close(self._master_fd)
        except OSError:
            pass
        self._master_fd = -1

    def kill(self) -> None:
        """Kill the entire process group. No-op on a dead session.

        Returns without waiting; ``on_exit`` fires once the watcher thread
        has reaped the process.
        """
        if self._status is not PTYStatus.RUNNING:
            return

        self._status = PTYStatus.KILLING
        self._signal_group("kill")
        self._hung_up = True
        self._release_fd()
        self._status = PTYStatus.KILLED
        self._maybe_finish()

    # ------------------------------------------------------------------
    # Input and geometry
    # ------------------------------------------------------------------

    def write(self, data: str) -> None:
        """Forward text to the shell's stdin.

        Writing to a dead session is logged and dropped, never raised.
        """
        try:
            self._write(data.encode("utf-8"))
        except WriteAfterExit as e:
            logger.debug("%s", e)

    def _write(self, payload: bytes) -> None:
        if self._status is not PTYStatus.RUNNING:
            raise WriteAfterExit(f"PTY session {self.id} is not running")
        view = memoryview(payload)
        while view:
            try:
                written = os.write(self._master_fd, view)
            except OSError as e:
                raise WriteAfterExit(f"PTY session {self.id} write failed: {e}") from e
            view = view[written:]

    def resize(self, cols: int, rows: int) -> None:
        """Apply a new window size; the kernel sends SIGWINCH to the shell.

        Raises:
            ResizeError: the session is not running.
        """
        if self._status is not PTYStatus.RUNNING:
            raise ResizeError(f"PTY session {self.id} is not running")
        try:
            self._set_winsize(self._master_fd, cols, rows)
        except OSError as e:
            raise ResizeError(f"PTY session {self.id} resize failed: {e}") from e
        self.cols = cols
        self.rows = rows

    @staticmethod
    def _set_winsize(fd: int, cols: int, rows: int) -> None:
        fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def alive(self) -> bool:
        return self._status == PTYStatus.RUNNING

    @property
    def status(self) -> PTYStatus:
        return self._status

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    @property
    def geometry(self) -> tuple[int, int]:
        return self.cols, self.rows

    async def wait_for_exit(self, timeout: float | None = 10.0) -> bool:
        """Wait until exit has been reported. Returns False on timeout."""
        if self._exit_notified:
            return True
        if self._exited is None:
            return False
        try:
            await asyncio.wait_for(self._exited.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False
