"""
Client side of a terminal session over a WebSocket.
"""

from __future__ import annotations
import threading
import logging
from typing import Union

from websockets.exceptions import ConnectionClosed
from websockets.sync.server import ServerConnection

from ..errors import TransportError

logger = logging.getLogger(__name__)


class WebSocketConnection:
    """
    Adapts a websockets ServerConnection to what sessions expect.

    Terminal output goes out as binary frames so bytes reach the browser
    untouched; diagnostics go out as text frames. Text frames from the
    client are treated as UTF-8 terminal input.

    recv() and send_*() may be called from different threads.
    """

    def __init__(self, websocket: ServerConnection):
        self._ws = websocket
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def remote_address(self) -> str:
        address = self._ws.remote_address
        if isinstance(address, tuple):
            return f"{address[0]}:{address[1]}"
        return str(address)

    @property
    def request_path(self) -> str:
        request = self._ws.request
        return request.path if request is not None else ""

    def recv(self) -> bytes:
        """Next payload from the client. Raises TransportError once closed."""
        try:
            message = self._ws.recv()
        except ConnectionClosed as e:
            raise TransportError(f"Connection closed ({e})") from None
        if isinstance(message, str):
            return message.encode('utf-8')
        return message

    def send_output(self, data: bytes) -> None:
        """Send raw terminal output."""
        self._send(data)

    def send_notice(self, text: str) -> None:
        """Send a diagnostic line."""
        self._send(text)

    def _send(self, message: Union[str, bytes]) -> None:
        try:
            self._ws.send(message)
        except ConnectionClosed as e:
            raise TransportError(f"Connection closed ({e})") from None

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        logger.debug(f"Closing connection from {self.remote_address}")
        self._ws.close()
