"""
WebSocket listener: accepts connections, waits for a handshake and
hands each connection to its own TerminalSession.
"""

from __future__ import annotations
import threading
import logging
from http import HTTPStatus
from typing import Optional, Callable
from urllib.parse import urlsplit

from websockets.sync.server import serve, Server, ServerConnection
from websockets.http11 import Request, Response

from .connection import WebSocketConnection
from ..config import BridgeSettings
from ..errors import HandshakeError, TransportError, LabtermError
from ..session.base import BackendDriver
from ..session.handshake import HandshakeRequest, TargetKind, parse_handshake
from ..session.container_shell import ContainerShellDriver
from ..session.vm_login import VmLoginDriver
from ..session.device_ssh import DeviceShellDriver
from ..session.terminal import (
    TerminalSession, ClientConnection, FixedPasswordPolicy, error_notice,
)

logger = logging.getLogger(__name__)

DRIVERS = {
    TargetKind.CONTAINER: ContainerShellDriver,
    TargetKind.VM: VmLoginDriver,
    TargetKind.DEVICE: DeviceShellDriver,
}

DriverFactory = Callable[[HandshakeRequest, BridgeSettings], BackendDriver]


def create_driver(handshake: HandshakeRequest, settings: BridgeSettings) -> BackendDriver:
    """Construct the driver matching the handshake's target kind."""
    return DRIVERS[handshake.target_kind](settings)


class ConnectionListener:
    """
    Accepts terminal connections.

    Usage:
        listener = ConnectionListener(settings)
        listener.serve_forever()      # blocks; one thread per connection

        # from another thread / signal handler
        listener.shutdown()

    Sessions are independent of each other. The listener only keeps a
    registry so shutdown() can stop them all.
    """

    def __init__(
        self,
        settings: BridgeSettings,
        driver_factory: Optional[DriverFactory] = None,
    ):
        self.settings = settings
        self.driver_factory = driver_factory or create_driver

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._sessions: set[TerminalSession] = set()
        self._pending: set[ClientConnection] = set()
        self._server: Optional[Server] = None
        self._shutting_down = threading.Event()

    @property
    def active_sessions(self) -> int:
        with self._lock:
            return len(self._sessions)

    # -------------------------------------------------------------------------
    # Connection handling
    # -------------------------------------------------------------------------

    def handle(self, connection: ClientConnection) -> None:
        """Serve one connection from handshake to close."""
        with self._lock:
            if self._shutting_down.is_set():
                connection.close()
                return
            self._pending.add(connection)

        try:
            handshake = self._await_handshake(connection)
        finally:
            with self._lock:
                self._pending.discard(connection)

        if handshake is None:
            return

        logger.info(f"Handshake accepted: {handshake.describe()}")
        try:
            driver = self.driver_factory(handshake, self.settings)
        except (LabtermError, OSError, ValueError) as e:
            logger.error(f"Could not create driver for {handshake.describe()}: {e}")
            try:
                connection.send_notice(error_notice(str(e)))
            except TransportError as notice_error:
                logger.debug(f"Could not report driver error: {notice_error}")
            connection.close()
            return

        session = TerminalSession(
            connection,
            handshake,
            driver,
            auth_policy=FixedPasswordPolicy(self.settings.device_password),
        )

        with self._lock:
            self._sessions.add(session)
            if self._shutting_down.is_set():
                session.stop("Server shutting down")
        try:
            session.run()
        finally:
            with self._idle:
                self._sessions.discard(session)
                self._idle.notify_all()
            logger.info(f"Session ended: {handshake.describe()}")

    def _await_handshake(self, connection: ClientConnection) -> Optional[HandshakeRequest]:
        """
        Read payloads until one is a valid handshake.

        Invalid handshakes are reported and the client may try again.
        Returns None if the client leaves first.
        """
        while True:
            try:
                payload = connection.recv()
            except TransportError as e:
                logger.info(f"Client left before handshake: {e}")
                connection.close()
                return None

            try:
                return parse_handshake(payload)
            except HandshakeError as e:
                logger.warning(f"Rejected handshake: {e}")
                try:
                    connection.send_notice(error_notice(f"Invalid handshake: {e}"))
                except TransportError:
                    connection.close()
                    return None

    # -------------------------------------------------------------------------
    # WebSocket server
    # -------------------------------------------------------------------------

    def _on_websocket(self, websocket: ServerConnection) -> None:
        connection = WebSocketConnection(websocket)
        logger.info(f"New connection from {connection.remote_address}")
        self.handle(connection)

    def _check_path(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        path = urlsplit(request.path).path
        if path != self.settings.path:
            logger.debug(f"Rejecting request for {request.path}")
            return connection.respond(HTTPStatus.NOT_FOUND, "Not found\n")
        return None

    def serve_forever(self) -> None:
        """Listen until shutdown() is called."""
        with serve(
            self._on_websocket,
            self.settings.host,
            self.settings.port,
            process_request=self._check_path,
            compression=None,
            max_size=None,
        ) as server:
            self._server = server
            logger.info(
                f"Terminal bridge listening on "
                f"ws://{self.settings.host}:{self.settings.port}{self.settings.path}"
            )
            server.serve_forever()

    def shutdown(self, timeout: float = 5.0) -> None:
        """
        Stop accepting connections and stop every live session.

        Waits up to `timeout` seconds for sessions to finish tearing down.
        """
        self._shutting_down.set()
        if self._server is not None:
            self._server.shutdown()

        with self._lock:
            sessions = list(self._sessions)
            pending = list(self._pending)

        logger.info(f"Shutting down: {len(sessions)} session(s), {len(pending)} pending")
        for session in sessions:
            session.stop("Server shutting down")
        for connection in pending:
            connection.close()

        with self._idle:
            if not self._idle.wait_for(lambda: not self._sessions, timeout):
                logger.warning(f"{len(self._sessions)} session(s) still closing after {timeout}s")
