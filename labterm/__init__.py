"""
labterm - browser terminal bridge for network-emulation labs.

One WebSocket connection carries one terminal session. The first message
is a JSON handshake selecting the backend:

- container: shell inside a running lab container (docker exec on a PTY)
- vm: ssh login to a lab VM (native ssh on a PTY)
- device: SSH shell on a network device (Paramiko, keyboard-interactive)

After that, bytes are relayed unchanged in both directions until either
side goes away.
"""

__version__ = "0.1.0"

from .config import BridgeSettings, load_settings
from .errors import (
    LabtermError,
    HandshakeError,
    DriverStartError,
    AuthenticationError,
    AuthenticationTimeout,
    BackendExitError,
    TransportError,
)
from .session.base import SessionState, BackendDriver
from .session.handshake import HandshakeRequest, TargetKind, parse_handshake
from .session.terminal import TerminalSession, FixedPasswordPolicy
from .server.listener import ConnectionListener, create_driver

__all__ = [
    # Settings
    "BridgeSettings",
    "load_settings",
    # Errors
    "LabtermError",
    "HandshakeError",
    "DriverStartError",
    "AuthenticationError",
    "AuthenticationTimeout",
    "BackendExitError",
    "TransportError",
    # Sessions
    "SessionState",
    "BackendDriver",
    "HandshakeRequest",
    "TargetKind",
    "parse_handshake",
    "TerminalSession",
    "FixedPasswordPolicy",
    # Server
    "ConnectionListener",
    "create_driver",
]
