"""
Session states, events and the abstract backend driver.

Drivers never call back into the session directly. They push events into
a sink (normally the session's queue) and the session's control loop
drains them in order.
"""

from __future__ import annotations
import threading
from abc import ABC, abstractmethod
from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Optional, Callable, TYPE_CHECKING

if TYPE_CHECKING:
    from .handshake import HandshakeRequest


class SessionState(Enum):
    """Session lifecycle states."""
    INIT = auto()
    CONNECTING = auto()
    AUTHENTICATING = auto()
    ACTIVE = auto()
    CLOSED = auto()


@dataclass
class SessionEvent:
    """Base class for session events."""
    pass


# -----------------------------------------------------------------------------
# Driver -> session
# -----------------------------------------------------------------------------

@dataclass
class DataReceived(SessionEvent):
    """Output bytes from the backend."""
    data: bytes


@dataclass
class AuthenticationStarted(SessionEvent):
    """Backend reached the credential exchange."""
    pass


@dataclass
class DriverReady(SessionEvent):
    """Backend has a usable interactive shell."""
    pass


@dataclass
class ProcessExited(SessionEvent):
    """Backend process ended or its channel closed."""
    exit_code: Optional[int] = None
    signal: Optional[int] = None


@dataclass
class DriverFailed(SessionEvent):
    """Backend could not start, authenticate, or keep running."""
    error: Exception


@dataclass(eq=False)
class AuthChallenge(SessionEvent):
    """
    One round of keyboard-interactive authentication.

    The driver thread emits the challenge and blocks in wait() until the
    session supplies one response per prompt via answer().
    """
    prompts: list[str]
    name: str = ""
    instructions: str = ""
    responses: Optional[list[str]] = None
    _answered: threading.Event = field(default_factory=threading.Event, repr=False)

    def answer(self, responses: list[str]) -> None:
        """Supply responses and wake the waiting driver."""
        if len(responses) != len(self.prompts):
            raise ValueError(
                f"Expected {len(self.prompts)} responses, got {len(responses)}"
            )
        self.responses = list(responses)
        self._answered.set()

    def wait(self, timeout: Optional[float] = None) -> Optional[list[str]]:
        """Block until answered. Returns None on timeout."""
        if not self._answered.wait(timeout):
            return None
        return self.responses


# -----------------------------------------------------------------------------
# Client / control -> session
# -----------------------------------------------------------------------------

@dataclass
class ClientInput(SessionEvent):
    """Raw terminal input from the client."""
    data: bytes


@dataclass
class ClientClosed(SessionEvent):
    """Client connection went away."""
    reason: str = ""


@dataclass
class StopRequested(SessionEvent):
    """Explicit stop issued by the server."""
    reason: str = "Session stopped"


@dataclass
class StateChanged(SessionEvent):
    """Session state changed."""
    old_state: SessionState
    new_state: SessionState
    message: str = ""


EventSink = Callable[[SessionEvent], None]


class BackendDriver(ABC):
    """
    Abstract backend driver.

    Capability set: start, write, stop. Output, readiness and exit are
    reported as events through the sink set with set_event_sink().
    A driver is owned by exactly one session and started at most once.
    """

    # Seconds allowed between start() and DriverReady. None means unbounded.
    ready_timeout: Optional[float] = None

    def __init__(self):
        self._sink: Optional[EventSink] = None

    def set_event_sink(self, sink: EventSink) -> None:
        """Set the callable receiving driver events."""
        self._sink = sink

    def _emit(self, event: SessionEvent) -> None:
        if self._sink is not None:
            self._sink(event)

    @abstractmethod
    def start(self, handshake: HandshakeRequest) -> None:
        """
        Begin connecting to the backend.

        Must not block on the backend: progress is reported through
        events from a background thread.
        """
        pass

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Send raw input bytes to the backend."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Release the backend process/connection. Idempotent."""
        pass
