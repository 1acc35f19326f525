"""
Terminal session: one client connection bridged to one backend driver.

State machine:

    INIT -> CONNECTING -> [AUTHENTICATING] -> ACTIVE -> CLOSED
                 \\________________\\____________________/^

Every input (client bytes, driver output, driver lifecycle, stop
requests) arrives as an event on a single queue drained by run(), so
operations within a session are strictly ordered.
"""

from __future__ import annotations
import queue
import threading
import time
import logging
from typing import Optional, Callable, Protocol

from .base import (
    BackendDriver, SessionState, SessionEvent, StateChanged,
    DataReceived, AuthenticationStarted, AuthChallenge, DriverReady,
    ProcessExited, DriverFailed, ClientInput, ClientClosed, StopRequested,
)
from .handshake import HandshakeRequest
from ..errors import (
    LabtermError, AuthenticationTimeout, BackendExitError, DriverStartError,
    TransportError,
)

logger = logging.getLogger(__name__)

RED = "\x1b[31m"
RESET = "\x1b[0m"


def error_notice(message: str) -> str:
    """Single-line diagnostic shown in the client terminal."""
    return f"\r\n{RED}Error: {message}{RESET}\r\n"


def exit_notice(exit_code: Optional[int] = None, signal: Optional[int] = None) -> str:
    """Notice sent when the backend ends the session."""
    detail = []
    if exit_code is not None:
        detail.append(f"exit code {exit_code}")
    if signal is not None:
        detail.append(f"signal {signal}")
    suffix = f" ({', '.join(detail)})" if detail else ""
    return f"\r\n{RED}Connection closed{suffix}{RESET}\r\n"


class ClientConnection(Protocol):
    """What a session needs from the client side."""

    def recv(self) -> bytes: ...

    def send_output(self, data: bytes) -> None: ...

    def send_notice(self, text: str) -> None: ...

    def close(self) -> None: ...


class FixedPasswordPolicy:
    """Answers every authentication prompt with the same password."""

    def __init__(self, password: str):
        self._password = password

    def __call__(self, challenge: AuthChallenge) -> list[str]:
        return [self._password] * len(challenge.prompts)

    def __repr__(self) -> str:
        return "FixedPasswordPolicy(password=****)"


class TerminalSession:
    """
    Owns one client connection and one backend driver.

    run() blocks the calling thread until the session is CLOSED. stop()
    may be called from any thread. Teardown happens exactly once no
    matter how many close triggers race.
    """

    def __init__(
        self,
        connection: ClientConnection,
        handshake: HandshakeRequest,
        driver: BackendDriver,
        auth_policy: Optional[Callable[[AuthChallenge], list[str]]] = None,
    ):
        self.connection = connection
        self.handshake = handshake
        self.driver = driver
        self.auth_policy = auth_policy

        self._state = SessionState.INIT
        self._state_lock = threading.Lock()
        self._events: queue.Queue[SessionEvent] = queue.Queue()

        self._teardown_lock = threading.Lock()
        self._driver_stopped = False
        self._connection_closed = False

        # Client bytes that arrive before the backend is ready
        self._pending_input: list[bytes] = []
        self._deadline: Optional[float] = None

        self.on_state_change: Optional[Callable[[StateChanged], None]] = None

    # -------------------------------------------------------------------------
    # Public interface
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        """Current session state (thread-safe)."""
        with self._state_lock:
            return self._state

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.state == SessionState.CLOSED

    def post(self, event: SessionEvent) -> None:
        """Queue an event for the control loop."""
        self._events.put(event)

    def stop(self, reason: str = "Session stopped") -> None:
        """Request shutdown from any thread."""
        self.post(StopRequested(reason))

    def run(self) -> None:
        """Start the driver and relay until the session closes."""
        if self.state != SessionState.INIT:
            raise RuntimeError(f"Session already started ({self.state.name})")

        self._set_state(SessionState.CONNECTING, self.handshake.describe())
        if self.driver.ready_timeout is not None:
            self._deadline = time.monotonic() + self.driver.ready_timeout

        threading.Thread(
            target=self._client_reader,
            name=f"client-{self.handshake.target_name}",
            daemon=True,
        ).start()

        self.driver.set_event_sink(self.post)
        try:
            self.driver.start(self.handshake)
        except (LabtermError, OSError, RuntimeError) as e:
            logger.error(f"Driver construction failed: {e}")
            error = e if isinstance(e, LabtermError) else DriverStartError(str(e))
            self._close(error_notice(str(error)), str(error))
            return

        while self.state != SessionState.CLOSED:
            try:
                event = self._next_event()
            except AuthenticationTimeout as e:
                logger.warning(f"{self.handshake.describe()}: {e}")
                self._close(error_notice(str(e)), str(e))
                break
            self._dispatch(event)

    # -------------------------------------------------------------------------
    # Control loop
    # -------------------------------------------------------------------------

    def _next_event(self) -> SessionEvent:
        """Block for the next event, bounded by the ready deadline."""
        if self._deadline is None or self.state == SessionState.ACTIVE:
            return self._events.get()

        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            raise AuthenticationTimeout()
        try:
            return self._events.get(timeout=remaining)
        except queue.Empty:
            raise AuthenticationTimeout() from None

    def _dispatch(self, event: SessionEvent) -> None:
        if isinstance(event, ClientInput):
            self._on_client_input(event.data)

        elif isinstance(event, DataReceived):
            if self.state == SessionState.ACTIVE:
                self._send_output(event.data)
            else:
                logger.debug(f"Dropping {len(event.data)} bytes received before ACTIVE")

        elif isinstance(event, AuthenticationStarted):
            if self.state == SessionState.CONNECTING:
                self._set_state(SessionState.AUTHENTICATING)

        elif isinstance(event, AuthChallenge):
            self._on_challenge(event)

        elif isinstance(event, DriverReady):
            self._on_ready()

        elif isinstance(event, ProcessExited):
            self._on_exit(event)

        elif isinstance(event, DriverFailed):
            message = str(event.error) or type(event.error).__name__
            logger.error(f"{self.handshake.describe()}: {message}")
            self._close(error_notice(message), message)

        elif isinstance(event, ClientClosed):
            logger.info(f"Client disconnected {event.reason}".rstrip())
            self._close(None, "Client disconnected")

        elif isinstance(event, StopRequested):
            self._close(exit_notice(), event.reason)

        else:
            logger.warning(f"Unhandled session event: {event!r}")

    def _on_client_input(self, data: bytes) -> None:
        if self.state == SessionState.ACTIVE:
            self.driver.write(data)
        else:
            self._pending_input.append(data)

    def _on_challenge(self, challenge: AuthChallenge) -> None:
        if self.state == SessionState.CONNECTING:
            self._set_state(SessionState.AUTHENTICATING)
        if self.state != SessionState.AUTHENTICATING:
            logger.warning(f"Ignoring auth challenge in state {self.state.name}")
            return
        if self.auth_policy is None:
            self._close(
                error_notice("Authentication required but no credentials configured"),
                "No auth policy",
            )
            return
        logger.debug(f"Answering {len(challenge.prompts)} authentication prompt(s)")
        challenge.answer(self.auth_policy(challenge))

    def _on_ready(self) -> None:
        if self.state not in (SessionState.CONNECTING, SessionState.AUTHENTICATING):
            logger.warning(f"Ignoring ready signal in state {self.state.name}")
            return
        self._set_state(SessionState.ACTIVE)
        pending, self._pending_input = self._pending_input, []
        for data in pending:
            self.driver.write(data)

    def _on_exit(self, event: ProcessExited) -> None:
        if self.state == SessionState.ACTIVE:
            logger.info(
                f"{self.handshake.describe()} exited "
                f"(code={event.exit_code}, signal={event.signal})"
            )
            self._close(exit_notice(event.exit_code, event.signal), "Backend exited")
        else:
            # Exited before it was ever usable
            error = BackendExitError(event.exit_code, event.signal)
            logger.error(f"{self.handshake.describe()}: {error}")
            self._close(error_notice(str(error)), str(error))

    def _send_output(self, data: bytes) -> None:
        try:
            self.connection.send_output(data)
        except TransportError as e:
            logger.info(f"Client gone while sending output: {e}")
            self._close(None, "Client disconnected")

    # -------------------------------------------------------------------------
    # Client side
    # -------------------------------------------------------------------------

    def _client_reader(self) -> None:
        """Forward client payloads into the event queue until it closes."""
        while True:
            try:
                data = self.connection.recv()
            except TransportError as e:
                self.post(ClientClosed(str(e)))
                return
            self.post(ClientInput(data))

    # -------------------------------------------------------------------------
    # State and teardown
    # -------------------------------------------------------------------------

    def _set_state(self, new_state: SessionState, message: str = "") -> None:
        """Update state and notify observer."""
        with self._state_lock:
            old_state = self._state
            self._state = new_state
        logger.info(f"Session state: {old_state.name} -> {new_state.name} {message}".rstrip())
        if self.on_state_change:
            try:
                self.on_state_change(StateChanged(old_state, new_state, message))
            except Exception as e:
                logger.exception(f"State observer error: {e}")

    def _close(self, notice: Optional[str], reason: str) -> None:
        """
        Tear down: stop the driver, send the notice, close the connection.

        Each step runs at most once across all callers.
        """
        with self._teardown_lock:
            if self.state == SessionState.CLOSED:
                return

            if not self._driver_stopped:
                self._driver_stopped = True
                try:
                    self.driver.stop()
                except (LabtermError, OSError) as e:
                    logger.error(f"Driver stop failed: {e}")

            if not self._connection_closed:
                self._connection_closed = True
                if notice:
                    try:
                        self.connection.send_notice(notice)
                    except TransportError as e:
                        logger.debug(f"Could not send closing notice: {e}")
                self.connection.close()

            self._set_state(SessionState.CLOSED, reason)
