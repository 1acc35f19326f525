"""
Bridge settings.

Resolved in three layers, later layers winning:
  1. ~/.labterm/config.yaml (or an explicit path)
  2. LABTERM_<FIELD> environment variables
  3. Command-line options
"""

from __future__ import annotations
import os
import logging
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Optional, Mapping

import yaml

logger = logging.getLogger(__name__)

# Default config location
DEFAULT_CONFIG_DIR = Path.home() / ".labterm"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

ENV_PREFIX = "LABTERM_"

SECRET_FIELDS = ("device_password",)


@dataclass
class BridgeSettings:
    """
    Settings for the terminal bridge.
    """
    # Listener
    host: str = "0.0.0.0"
    port: int = 3001
    path: str = "/ws/ssh"

    # Terminal
    term_type: str = "xterm-256color"
    read_buffer_size: int = 65536
    pty_backend: str = "pexpect"

    # Container shells
    container_runtime: str = "docker"
    container_shell: str = "sh"

    # VM logins
    vm_user: str = "admin"
    vm_ssh_options: list[str] = field(default_factory=list)

    # Network device logins
    device_user: str = "admin"
    device_password: str = "admin"
    device_port: int = 22
    auth_timeout: float = 10.0
    legacy_algorithms: bool = True

    log_level: str = "INFO"

    def to_dict(self) -> dict:
        """Serialize to dict."""
        return asdict(self)

    def to_public_dict(self) -> dict:
        """Serialize with secrets masked."""
        data = self.to_dict()
        for name in SECRET_FIELDS:
            if data.get(name):
                data[name] = "********"
        return data

    @classmethod
    def from_dict(cls, data: dict) -> BridgeSettings:
        """Deserialize from dict, ignoring unknown keys."""
        valid_fields = {f.name for f in fields(cls)}
        unknown = set(data) - valid_fields
        if unknown:
            logger.warning(f"Ignoring unknown settings: {', '.join(sorted(unknown))}")
        filtered = {k: v for k, v in data.items() if k in valid_fields}
        return cls(**filtered)

    def apply_env(self, environ: Mapping[str, str] = None) -> BridgeSettings:
        """
        Override fields from LABTERM_* environment variables.

        A value that cannot be converted is logged and the field keeps
        its current value.
        """
        environ = os.environ if environ is None else environ
        for f in fields(self):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            try:
                value = _coerce(raw, getattr(self, f.name), f.name)
            except ValueError as e:
                logger.warning(f"Ignoring {ENV_PREFIX}{f.name.upper()}: {e}")
                continue
            setattr(self, f.name, value)
        return self

    def update(self, **overrides) -> BridgeSettings:
        """Apply non-None overrides (typically CLI options)."""
        for name, value in overrides.items():
            if value is None:
                continue
            if not hasattr(self, name):
                raise AttributeError(f"Unknown setting: {name}")
            setattr(self, name, value)
        return self

    def validate(self) -> None:
        """Raise ValueError for settings that cannot work."""
        if not 0 < self.port < 65536:
            raise ValueError(f"port out of range: {self.port}")
        if not 0 < self.device_port < 65536:
            raise ValueError(f"device_port out of range: {self.device_port}")
        if self.auth_timeout <= 0:
            raise ValueError("auth_timeout must be positive")
        if self.read_buffer_size <= 0:
            raise ValueError("read_buffer_size must be positive")
        if not self.path.startswith("/"):
            raise ValueError(f"path must start with '/': {self.path}")
        if self.pty_backend not in ("pexpect", "pty"):
            raise ValueError(f"Unknown pty_backend: {self.pty_backend}")


def _coerce(raw: str, current, name: str):
    """Convert an environment string to the type of the current value."""
    if isinstance(current, bool):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"{ENV_PREFIX}{name.upper()} must be a boolean, got {raw!r}")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if isinstance(current, list):
        return raw.split()
    return raw


def load_settings(
    config_path: Optional[Path] = None,
    environ: Mapping[str, str] = None,
) -> BridgeSettings:
    """
    Load settings from YAML, then apply environment overrides.

    A missing file yields defaults. An unreadable or malformed file is
    logged and also yields defaults.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_FILE
    settings = BridgeSettings()

    if path.exists():
        try:
            data = yaml.safe_load(path.read_text()) or {}
            if not isinstance(data, dict):
                raise TypeError(f"expected a mapping, got {type(data).__name__}")
            settings = BridgeSettings.from_dict(data)
            logger.debug(f"Loaded settings from {path}")
        except (yaml.YAMLError, TypeError, OSError) as e:
            logger.warning(f"Failed to load settings from {path}: {e}, using defaults")
    else:
        logger.debug(f"No settings file at {path}, using defaults")

    return settings.apply_env(environ)
