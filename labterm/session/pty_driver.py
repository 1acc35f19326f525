"""
Drivers backed by a local process on a pseudo-terminal.
"""

from __future__ import annotations
import shutil
import threading
import logging
from abc import abstractmethod
from typing import Optional

import pexpect

from .base import (
    BackendDriver, SessionEvent,
    DataReceived, DriverReady, DriverFailed, ProcessExited,
)
from .handshake import HandshakeRequest
from .pty_transport import create_pty, PTYTransport
from ..config import BridgeSettings
from ..errors import DriverStartError

logger = logging.getLogger(__name__)


class PTYDriver(BackendDriver):
    """
    Runs a command on a PTY and relays its output.

    Lifecycle (all on a background thread):
        build command -> spawn -> DriverReady -> DataReceived* -> ProcessExited

    A spawn failure emits DriverFailed instead. Nothing is emitted once
    stop() has been called.
    """

    # Upper bound on how long a blocked read delays stop()
    READ_TIMEOUT = 0.25

    def __init__(self, settings: BridgeSettings):
        super().__init__()
        self.settings = settings

        self._pty: Optional[PTYTransport] = None
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @abstractmethod
    def build_command(self, handshake: HandshakeRequest) -> list[str]:
        """Command line to run for this handshake."""
        pass

    @staticmethod
    def resolve_executable(name: str) -> str:
        """Find an executable in PATH or raise DriverStartError."""
        path = shutil.which(name)
        if not path:
            raise DriverStartError(f"{name} not found in PATH")
        return path

    def start(self, handshake: HandshakeRequest) -> None:
        if self._thread is not None:
            raise RuntimeError("Driver already started")
        self._thread = threading.Thread(
            target=self._run,
            args=(handshake,),
            name=f"{type(self).__name__}-{handshake.target_name}",
            daemon=True,
        )
        self._thread.start()

    def write(self, data: bytes) -> None:
        transport = self._pty
        if transport is not None:
            transport.write(data)

    def stop(self) -> None:
        with self._lock:
            if self._stop_event.is_set():
                return
            self._stop_event.set()

        # Let the reader notice the stop flag before the PTY goes away
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.READ_TIMEOUT * 4)

        with self._lock:
            transport, self._pty = self._pty, None
        if transport is not None:
            transport.close()
            logger.info(
                f"{type(self).__name__} stopped "
                f"(exit={transport.exit_code}, signal={transport.signal_status})"
            )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _emit_unless_stopped(self, event: SessionEvent) -> None:
        if not self._stop_event.is_set():
            self._emit(event)

    def _run(self, handshake: HandshakeRequest) -> None:
        try:
            command = self.build_command(handshake)
            logger.info(f"Spawning: {' '.join(command)}")
            transport = create_pty(self.settings.pty_backend)
            transport.spawn(
                command,
                env={'TERM': self.settings.term_type},
                dimensions=(handshake.rows, handshake.columns),
            )
        except DriverStartError as e:
            logger.error(f"Driver start failed: {e}")
            self._emit_unless_stopped(DriverFailed(e))
            return
        except (OSError, RuntimeError, ValueError, pexpect.ExceptionPexpect) as e:
            logger.error(f"Driver start failed: {e}")
            self._emit_unless_stopped(DriverFailed(DriverStartError(str(e))))
            return

        with self._lock:
            if self._stop_event.is_set():
                # stop() raced with spawn; nobody else will close it
                transport.close()
                return
            self._pty = transport

        self._emit_unless_stopped(DriverReady())
        self._read_loop(transport)

    def _read_loop(self, transport: PTYTransport) -> None:
        size = self.settings.read_buffer_size
        while not self._stop_event.is_set():
            try:
                data = transport.read(size, timeout=self.READ_TIMEOUT)
            except EOFError:
                break
            except OSError as e:
                logger.debug(f"PTY read error: {e}")
                break
            if data:
                self._emit_unless_stopped(DataReceived(data))

        with self._lock:
            if self._stop_event.is_set():
                return
            # Process ended on its own; reap it to learn the exit status
            self._pty = None
        transport.close()

        logger.info(
            f"Process exited (code {transport.exit_code}, "
            f"signal {transport.signal_status})"
        )
        self._emit_unless_stopped(
            ProcessExited(transport.exit_code, transport.signal_status)
        )
