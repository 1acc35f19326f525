"""WebSocket front end for terminal sessions."""

from .connection import WebSocketConnection
from .listener import ConnectionListener, create_driver, DRIVERS

__all__ = [
    "WebSocketConnection",
    "ConnectionListener",
    "create_driver",
    "DRIVERS",
]
