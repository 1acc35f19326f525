import json
import threading
from http import HTTPStatus
from types import SimpleNamespace

import pytest

from labterm.errors import DriverStartError
from labterm.server.listener import ConnectionListener, create_driver
from labterm.session.base import AuthChallenge
from labterm.session.container_shell import ContainerShellDriver
from labterm.session.device_ssh import DeviceShellDriver
from labterm.session.handshake import HandshakeRequest, TargetKind
from labterm.session.vm_login import VmLoginDriver

from conftest import FakeConnection, FakeDriver, wait_for

CONTAINER = json.dumps({"targetKind": "container", "targetName": "r1"})


class RecordingFactory:

    def __init__(self, error=None):
        self.calls = []
        self.drivers = []
        self.error = error

    def __call__(self, handshake, settings):
        self.calls.append(handshake)
        if self.error is not None:
            raise self.error
        driver = FakeDriver()
        self.drivers.append(driver)
        return driver


def serve_in_thread(listener, connection):
    thread = threading.Thread(target=listener.handle, args=(connection,), daemon=True)
    thread.start()
    return thread


@pytest.mark.parametrize("kind,expected", [
    (TargetKind.CONTAINER, ContainerShellDriver),
    (TargetKind.VM, VmLoginDriver),
    (TargetKind.DEVICE, DeviceShellDriver),
])
def test_create_driver_by_kind(settings, kind, expected):
    handshake = HandshakeRequest(kind, "n1", target_address="10.0.0.1")
    assert isinstance(create_driver(handshake, settings), expected)


class TestHandle:

    def test_session_runs_after_valid_handshake(self, settings):
        factory = RecordingFactory()
        listener = ConnectionListener(settings, driver_factory=factory)
        conn = FakeConnection([CONTAINER])
        thread = serve_in_thread(listener, conn)

        wait_for(lambda: listener.active_sessions == 1)
        assert factory.calls == [HandshakeRequest(TargetKind.CONTAINER, "r1")]

        conn.feed(b"uname\n")
        wait_for(lambda: factory.drivers[0].written == [b"uname\n"])

        conn.disconnect()
        thread.join(2)
        assert listener.active_sessions == 0
        assert factory.drivers[0].stop_count == 1

    def test_invalid_handshake_can_be_retried(self, settings):
        factory = RecordingFactory()
        listener = ConnectionListener(settings, driver_factory=factory)
        bad = json.dumps({"targetKind": "device", "targetName": "spine1"})
        conn = FakeConnection([bad, "garbage", CONTAINER])
        thread = serve_in_thread(listener, conn)

        wait_for(lambda: listener.active_sessions == 1)
        assert len(factory.calls) == 1
        assert len(conn.notices) == 2
        assert all("Invalid handshake" in notice for notice in conn.notices)
        assert not conn.closed

        conn.disconnect()
        thread.join(2)

    def test_retry_after_non_string_node_kind(self, settings):
        factory = RecordingFactory()
        listener = ConnectionListener(settings, driver_factory=factory)
        bad = json.dumps({"nodeKind": ["linux"], "nodeName": "r1"})
        conn = FakeConnection([bad, CONTAINER])
        thread = serve_in_thread(listener, conn)

        wait_for(lambda: listener.active_sessions == 1)
        assert factory.calls == [HandshakeRequest(TargetKind.CONTAINER, "r1")]
        assert len(conn.notices) == 1
        assert "Invalid handshake: nodeKind must be a string" in conn.notices[0]

        conn.disconnect()
        thread.join(2)
        assert not thread.is_alive()

    def test_client_leaves_before_handshake(self, settings):
        factory = RecordingFactory()
        listener = ConnectionListener(settings, driver_factory=factory)
        conn = FakeConnection()
        conn.disconnect()

        listener.handle(conn)

        assert factory.calls == []
        assert conn.closed
        assert conn.notices == []

    def test_driver_creation_error_is_reported(self, settings):
        factory = RecordingFactory(error=DriverStartError("no runtime"))
        listener = ConnectionListener(settings, driver_factory=factory)
        conn = FakeConnection([CONTAINER])

        listener.handle(conn)

        assert len(conn.notices) == 1
        assert "no runtime" in conn.notices[0]
        assert conn.close_count == 1
        assert listener.active_sessions == 0

    def test_device_sessions_answer_with_configured_password(self, settings):
        captured = {}

        def factory(handshake, settings_):
            driver = FakeDriver(auto_ready=False)
            captured["driver"] = driver
            return driver

        listener = ConnectionListener(settings, driver_factory=factory)
        device = json.dumps({"targetKind": "device", "targetAddress": "10.0.0.5"})
        conn = FakeConnection([device])
        thread = serve_in_thread(listener, conn)
        wait_for(lambda: listener.active_sessions == 1)

        challenge = AuthChallenge(prompts=["Password: "])
        captured["driver"].emit(challenge)
        assert challenge.wait(2) == ["secret"]

        conn.disconnect()
        thread.join(2)


class TestShutdown:

    def test_shutdown_stops_sessions(self, settings):
        factory = RecordingFactory()
        listener = ConnectionListener(settings, driver_factory=factory)
        conns = [FakeConnection([CONTAINER]) for _ in range(3)]
        threads = [serve_in_thread(listener, conn) for conn in conns]
        wait_for(lambda: listener.active_sessions == 3)

        listener.shutdown(timeout=2)

        assert listener.active_sessions == 0
        for thread in threads:
            thread.join(2)
            assert not thread.is_alive()
        assert all(driver.stop_count == 1 for driver in factory.drivers)
        assert all(conn.close_count == 1 for conn in conns)

    def test_shutdown_closes_pending_connections(self, settings):
        listener = ConnectionListener(settings, driver_factory=RecordingFactory())
        conn = FakeConnection()
        thread = serve_in_thread(listener, conn)
        wait_for(lambda: bool(listener._pending))

        listener.shutdown(timeout=1)
        thread.join(2)

        assert not thread.is_alive()
        assert conn.closed

    def test_refuses_connections_after_shutdown(self, settings):
        factory = RecordingFactory()
        listener = ConnectionListener(settings, driver_factory=factory)
        listener.shutdown(timeout=0.1)

        conn = FakeConnection([CONTAINER])
        listener.handle(conn)

        assert conn.closed
        assert factory.calls == []


class FakeHandshakeConnection:

    def __init__(self):
        self.responses = []

    def respond(self, status, text):
        self.responses.append((status, text))
        return (status, text)


@pytest.mark.parametrize("path,rejected", [
    ("/ws/ssh", False),
    ("/ws/ssh?session=1", False),
    ("/", True),
    ("/ws/other", True),
])
def test_only_configured_path_is_served(settings, path, rejected):
    listener = ConnectionListener(settings)
    connection = FakeHandshakeConnection()
    result = listener._check_path(connection, SimpleNamespace(path=path))
    if rejected:
        assert result == (HTTPStatus.NOT_FOUND, "Not found\n")
    else:
        assert result is None
        assert connection.responses == []
