"""
Shared fakes for session, driver and listener tests.
"""

import queue
import threading
import time

import pytest

from labterm.config import BridgeSettings
from labterm.errors import TransportError
from labterm.session.base import BackendDriver, DriverReady
from labterm.session.handshake import HandshakeRequest, TargetKind

_CLOSED = object()


def wait_for(predicate, timeout=2.0, interval=0.01):
    """Poll until predicate() is true or fail the test."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(interval)
    raise AssertionError("condition not met within timeout")


class FakeConnection:
    """In-memory client connection recording everything sent to it."""

    def __init__(self, incoming=()):
        self._incoming = queue.Queue()
        for item in incoming:
            self._incoming.put(item)
        self.log = []
        self.close_count = 0
        self._lock = threading.Lock()

    # test side
    def feed(self, data):
        self._incoming.put(data)

    def disconnect(self):
        self._incoming.put(_CLOSED)

    @property
    def outputs(self):
        return [payload for kind, payload in self.log if kind == "output"]

    @property
    def notices(self):
        return [payload for kind, payload in self.log if kind == "notice"]

    @property
    def closed(self):
        return self.close_count > 0

    # session side
    def recv(self):
        item = self._incoming.get()
        if item is _CLOSED:
            self._incoming.put(_CLOSED)
            raise TransportError("Connection closed")
        if isinstance(item, str):
            return item.encode("utf-8")
        return item

    def send_output(self, data):
        self._send("output", data)

    def send_notice(self, text):
        self._send("notice", text)

    def _send(self, kind, payload):
        with self._lock:
            if self.close_count:
                raise TransportError("Connection closed")
            self.log.append((kind, payload))

    def close(self):
        with self._lock:
            self.close_count += 1
            self.log.append(("close", None))
        self._incoming.put(_CLOSED)


class FakeDriver(BackendDriver):
    """Driver whose events are pushed by the test."""

    def __init__(self, ready_timeout=None, auto_ready=True, start_error=None):
        super().__init__()
        self.ready_timeout = ready_timeout
        self.auto_ready = auto_ready
        self.start_error = start_error
        self.started_with = None
        self.written = []
        self.stop_count = 0

    def start(self, handshake):
        self.started_with = handshake
        if self.start_error is not None:
            raise self.start_error
        if self.auto_ready:
            self._emit(DriverReady())

    def write(self, data):
        self.written.append(data)

    def stop(self):
        self.stop_count += 1

    def emit(self, event):
        self._emit(event)


def start_session(session):
    """Run a session on a background thread."""
    thread = threading.Thread(target=session.run, daemon=True)
    thread.start()
    return thread


@pytest.fixture
def settings():
    return BridgeSettings(device_password="secret", legacy_algorithms=False)


@pytest.fixture
def container_handshake():
    return HandshakeRequest(TargetKind.CONTAINER, "r1", columns=80, rows=24)


@pytest.fixture
def device_handshake():
    return HandshakeRequest(
        TargetKind.DEVICE, "10.0.0.5", target_address="10.0.0.5", columns=120, rows=40
    )
