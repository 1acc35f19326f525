"""
Handshake parsing.

The first payload on a new connection selects the backend:

    {"targetKind": "device", "targetAddress": "10.0.0.5",
     "columns": 120, "rows": 40}

The field names used by older lab UIs (nodeKind, nodeName, nodeIp,
username, cols) are accepted as well.
"""

from __future__ import annotations
import json
import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Optional, Union

from ..errors import HandshakeError

logger = logging.getLogger(__name__)

DEFAULT_COLUMNS = 80
DEFAULT_ROWS = 24

# Legacy nodeKind values; anything else was treated as a network device.
LEGACY_NODE_KINDS = {
    "linux": "container",
    "sonic-vm": "vm",
}

# canonical field -> accepted aliases, first match wins
FIELD_ALIASES = {
    "targetKind": ("targetKind", "target_kind"),
    "targetName": ("targetName", "target_name", "nodeName"),
    "targetAddress": ("targetAddress", "target_address", "nodeIp"),
    "requestedUser": ("requestedUser", "requested_user", "username"),
    "columns": ("columns", "cols"),
    "rows": ("rows",),
}


class TargetKind(Enum):
    """Backend selected by the handshake."""
    CONTAINER = "container"
    VM = "vm"
    DEVICE = "device"


@dataclass(frozen=True)
class HandshakeRequest:
    """Parsed handshake. One per session, never modified."""
    target_kind: TargetKind
    target_name: str
    target_address: Optional[str] = None
    requested_user: Optional[str] = None
    columns: int = DEFAULT_COLUMNS
    rows: int = DEFAULT_ROWS

    def to_dict(self) -> dict:
        data = asdict(self)
        data["target_kind"] = self.target_kind.value
        return data

    def describe(self) -> str:
        """Short label for log lines."""
        if self.target_kind == TargetKind.DEVICE:
            return f"device {self.target_name} ({self.target_address})"
        return f"{self.target_kind.value} {self.target_name}"


def _lookup(data: dict, name: str) -> Any:
    for alias in FIELD_ALIASES[name]:
        if data.get(alias) not in (None, ""):
            return data[alias]
    return None


def _optional_str(data: dict, name: str) -> Optional[str]:
    value = _lookup(data, name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise HandshakeError(f"{name} must be a string")
    return value.strip() or None


def _dimension(data: dict, name: str, default: int) -> int:
    value = _lookup(data, name)
    if value is None:
        return default
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise HandshakeError(f"{name} must be a positive integer")
    return value


def _target_kind(data: dict) -> TargetKind:
    kind = _lookup(data, "targetKind")
    if kind is not None and not isinstance(kind, str):
        raise HandshakeError("targetKind must be a string")
    if kind is None and data.get("nodeKind"):
        legacy = data["nodeKind"]
        if not isinstance(legacy, str):
            raise HandshakeError("nodeKind must be a string")
        kind = LEGACY_NODE_KINDS.get(legacy, TargetKind.DEVICE.value)
        logger.debug(f"Legacy nodeKind {legacy!r} mapped to {kind}")

    if kind is None:
        raise HandshakeError("Missing targetKind")

    try:
        return TargetKind(kind)
    except ValueError:
        choices = ", ".join(k.value for k in TargetKind)
        raise HandshakeError(
            f"Unknown targetKind {kind!r} (expected one of: {choices})"
        ) from None


def parse_handshake(payload: Union[str, bytes]) -> HandshakeRequest:
    """
    Parse the first client payload.

    Args:
        payload: Raw text or bytes received on the connection

    Returns:
        HandshakeRequest

    Raises:
        HandshakeError: Payload is not a JSON object or a required field
            is missing or invalid
    """
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError:
            raise HandshakeError("Handshake is not valid UTF-8") from None

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise HandshakeError(f"Handshake is not valid JSON: {e.msg}") from None

    if not isinstance(data, dict):
        raise HandshakeError("Handshake must be a JSON object")

    kind = _target_kind(data)
    name = _optional_str(data, "targetName")
    address = _optional_str(data, "targetAddress")

    if kind == TargetKind.DEVICE:
        if not address:
            raise HandshakeError("targetAddress is required for device targets")
        name = name or address
    elif not name:
        raise HandshakeError(f"targetName is required for {kind.value} targets")

    return HandshakeRequest(
        target_kind=kind,
        target_name=name,
        target_address=address,
        requested_user=_optional_str(data, "requestedUser"),
        columns=_dimension(data, "columns", DEFAULT_COLUMNS),
        rows=_dimension(data, "rows", DEFAULT_ROWS),
    )
