"""
Shell inside a running lab container.
"""

from __future__ import annotations
import logging

from .handshake import HandshakeRequest
from .pty_driver import PTYDriver

logger = logging.getLogger(__name__)


class ContainerShellDriver(PTYDriver):
    """
    Attaches to a container's shell with `<runtime> exec -it`.

    Runtime and shell come from settings (docker / sh by default), so
    podman-based labs only need a config change.
    """

    def build_command(self, handshake: HandshakeRequest) -> list[str]:
        runtime = self.resolve_executable(self.settings.container_runtime)
        if handshake.requested_user:
            logger.debug(
                f"Ignoring requested user {handshake.requested_user!r} "
                f"for container {handshake.target_name}"
            )
        return [
            runtime, 'exec', '-it',
            handshake.target_name,
            self.settings.container_shell,
        ]
