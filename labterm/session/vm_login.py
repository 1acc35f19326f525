"""
Login to a lab VM using the native ssh client on a PTY.
"""

from __future__ import annotations
import logging

from .handshake import HandshakeRequest
from .pty_driver import PTYDriver

logger = logging.getLogger(__name__)

# Lab VMs are recreated on every deploy, so their host keys never match.
HOST_KEY_OPTIONS = [
    '-o', 'StrictHostKeyChecking=no',
    '-o', 'UserKnownHostsFile=/dev/null',
]


class VmLoginDriver(PTYDriver):
    """
    Runs `ssh <vm_user>@<target_name>` on a PTY.

    The login identity is fixed by settings; the handshake's requested
    user is advisory and only logged. Any password prompt is shown to the
    client, exactly like a local terminal would.
    """

    def build_command(self, handshake: HandshakeRequest) -> list[str]:
        ssh = self.resolve_executable('ssh')
        user = self.settings.vm_user
        if handshake.requested_user and handshake.requested_user != user:
            logger.info(
                f"Requested user {handshake.requested_user!r} ignored, "
                f"logging in to {handshake.target_name} as {user!r}"
            )
        return [
            ssh,
            *HOST_KEY_OPTIONS,
            *self.settings.vm_ssh_options,
            f'{user}@{handshake.target_name}',
        ]
