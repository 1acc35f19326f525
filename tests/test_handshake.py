import json

import pytest

from labterm.errors import HandshakeError
from labterm.session.handshake import (
    HandshakeRequest, TargetKind, parse_handshake, DEFAULT_COLUMNS, DEFAULT_ROWS,
)


def payload(**fields):
    return json.dumps(fields)


class TestParseHandshake:

    def test_container(self):
        hs = parse_handshake(payload(targetKind="container", targetName="r1"))
        assert hs == HandshakeRequest(TargetKind.CONTAINER, "r1")
        assert (hs.columns, hs.rows) == (DEFAULT_COLUMNS, DEFAULT_ROWS)

    def test_device_with_dimensions(self):
        hs = parse_handshake(payload(
            targetKind="device", targetAddress="10.0.0.5", columns=120, rows=40,
        ))
        assert hs.target_kind is TargetKind.DEVICE
        assert hs.target_address == "10.0.0.5"
        # name falls back to the address
        assert hs.target_name == "10.0.0.5"
        assert (hs.columns, hs.rows) == (120, 40)

    def test_accepts_bytes(self):
        hs = parse_handshake(payload(targetKind="vm", targetName="vm1").encode())
        assert hs.target_kind is TargetKind.VM
        assert hs.target_name == "vm1"

    def test_requested_user_kept(self):
        hs = parse_handshake(payload(targetKind="vm", targetName="vm1", requestedUser="bob"))
        assert hs.requested_user == "bob"

    @pytest.mark.parametrize("node_kind,expected", [
        ("linux", TargetKind.CONTAINER),
        ("sonic-vm", TargetKind.VM),
        ("ceos", TargetKind.DEVICE),
    ])
    def test_legacy_field_names(self, node_kind, expected):
        hs = parse_handshake(payload(
            nodeKind=node_kind, nodeName="n1", nodeIp="172.20.20.2",
            username="admin", cols=100, rows=30,
        ))
        assert hs.target_kind is expected
        assert hs.target_name == "n1"
        assert hs.target_address == "172.20.20.2"
        assert hs.requested_user == "admin"
        assert hs.columns == 100

    def test_explicit_kind_wins_over_legacy(self):
        hs = parse_handshake(payload(targetKind="container", nodeKind="ceos", targetName="r1"))
        assert hs.target_kind is TargetKind.CONTAINER

    def test_device_requires_address(self):
        with pytest.raises(HandshakeError, match="targetAddress"):
            parse_handshake(payload(targetKind="device", targetName="spine1"))

    @pytest.mark.parametrize("kind", ["container", "vm"])
    def test_name_required(self, kind):
        with pytest.raises(HandshakeError, match="targetName"):
            parse_handshake(payload(targetKind=kind))

    def test_blank_name_counts_as_missing(self):
        with pytest.raises(HandshakeError):
            parse_handshake(payload(targetKind="container", targetName="   "))

    def test_missing_kind(self):
        with pytest.raises(HandshakeError, match="Missing targetKind"):
            parse_handshake(payload(targetName="r1"))

    def test_unknown_kind(self):
        with pytest.raises(HandshakeError, match="Unknown targetKind"):
            parse_handshake(payload(targetKind="mainframe", targetName="r1"))

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", "42", '"container"'])
    def test_not_an_object(self, raw):
        with pytest.raises(HandshakeError):
            parse_handshake(raw)

    def test_invalid_utf8(self):
        with pytest.raises(HandshakeError, match="UTF-8"):
            parse_handshake(b"\xff\xfe{")

    @pytest.mark.parametrize("value", [0, -5, "80", 12.5, True])
    def test_bad_dimensions(self, value):
        with pytest.raises(HandshakeError, match="columns"):
            parse_handshake(payload(targetKind="container", targetName="r1", columns=value))

    @pytest.mark.parametrize("fields", [
        {"nodeKind": ["linux"], "nodeName": "r1"},
        {"nodeKind": {"kind": "linux"}, "nodeName": "r1"},
        {"targetKind": ["container"], "targetName": "r1"},
        {"targetKind": 3, "targetName": "r1"},
    ])
    def test_non_string_kind(self, fields):
        with pytest.raises(HandshakeError, match="must be a string"):
            parse_handshake(json.dumps(fields))

    def test_non_string_name(self):
        with pytest.raises(HandshakeError, match="must be a string"):
            parse_handshake(payload(targetKind="container", targetName=7))


class TestHandshakeRequest:

    def test_to_dict_uses_plain_kind(self):
        hs = HandshakeRequest(TargetKind.VM, "vm1", columns=132, rows=50)
        assert hs.to_dict() == {
            "target_kind": "vm",
            "target_name": "vm1",
            "target_address": None,
            "requested_user": None,
            "columns": 132,
            "rows": 50,
        }

    def test_describe(self):
        assert HandshakeRequest(TargetKind.CONTAINER, "r1").describe() == "container r1"
        device = HandshakeRequest(TargetKind.DEVICE, "leaf1", target_address="10.1.1.1")
        assert device.describe() == "device leaf1 (10.1.1.1)"

    def test_immutable(self):
        hs = HandshakeRequest(TargetKind.CONTAINER, "r1")
        with pytest.raises(AttributeError):
            hs.rows = 10
