"""
Terminal sessions - handshake, backend drivers and the session state machine.

Drivers:

- ContainerShellDriver: `docker exec -it <name> sh` on a PTY
- VmLoginDriver: native `ssh admin@<name>` on a PTY
- DeviceShellDriver: Paramiko SSH with keyboard-interactive auth

All drivers report progress as events; TerminalSession drains them on
one queue together with client input.
"""

from .base import (
    SessionState,
    SessionEvent,
    BackendDriver,
    DataReceived,
    AuthenticationStarted,
    AuthChallenge,
    DriverReady,
    ProcessExited,
    DriverFailed,
    ClientInput,
    ClientClosed,
    StopRequested,
    StateChanged,
)
from .handshake import HandshakeRequest, TargetKind, parse_handshake
from .pty_transport import (
    PTYTransport,
    PexpectPTY,
    UnixPTY,
    create_pty,
    is_pty_available,
)
from .pty_driver import PTYDriver
from .container_shell import ContainerShellDriver
from .vm_login import VmLoginDriver
from .device_ssh import DeviceShellDriver
from .terminal import TerminalSession, FixedPasswordPolicy, error_notice, exit_notice

__all__ = [
    # Events and states
    "SessionState",
    "SessionEvent",
    "DataReceived",
    "AuthenticationStarted",
    "AuthChallenge",
    "DriverReady",
    "ProcessExited",
    "DriverFailed",
    "ClientInput",
    "ClientClosed",
    "StopRequested",
    "StateChanged",
    # Handshake
    "HandshakeRequest",
    "TargetKind",
    "parse_handshake",
    # Drivers
    "BackendDriver",
    "PTYDriver",
    "ContainerShellDriver",
    "VmLoginDriver",
    "DeviceShellDriver",
    # PTY support
    "PTYTransport",
    "PexpectPTY",
    "UnixPTY",
    "create_pty",
    "is_pty_available",
    # Session
    "TerminalSession",
    "FixedPasswordPolicy",
    "error_notice",
    "exit_notice",
]
