"""
Error taxonomy for terminal sessions.

Only HandshakeError is recoverable: the client may send a corrected
handshake on the same connection. Everything else ends the session.
"""

from __future__ import annotations
from typing import Optional


class LabtermError(Exception):
    """Base class for all bridge errors."""
    pass


class HandshakeError(LabtermError):
    """Malformed or incomplete handshake payload."""
    pass


class DriverStartError(LabtermError):
    """Backend process or connection could not be created."""
    pass


class AuthenticationError(LabtermError):
    """Credentials rejected by the backend."""
    pass


class AuthenticationTimeout(AuthenticationError):
    """Backend did not become ready within the allowed time."""

    def __init__(self, message: str = "Connection timeout"):
        super().__init__(message)


class BackendExitError(LabtermError):
    """Backend terminated while the session was still in use."""

    def __init__(self, exit_code: Optional[int] = None, signal: Optional[int] = None):
        self.exit_code = exit_code
        self.signal = signal
        detail = []
        if exit_code is not None:
            detail.append(f"exit code {exit_code}")
        if signal is not None:
            detail.append(f"signal {signal}")
        super().__init__(
            f"Backend exited ({', '.join(detail)})" if detail else "Backend exited"
        )


class TransportError(LabtermError):
    """Client connection dropped or unusable."""
    pass
