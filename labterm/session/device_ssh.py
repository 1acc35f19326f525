"""
Administrative SSH login to a network device using Paramiko.
"""

from __future__ import annotations
import socket
import threading
import logging
import warnings
from typing import Optional

import paramiko

from .base import (
    BackendDriver, SessionEvent, AuthChallenge, AuthenticationStarted,
    DataReceived, DriverReady, DriverFailed, ProcessExited,
)
from .handshake import HandshakeRequest
from ..config import BridgeSettings
from ..errors import AuthenticationError, AuthenticationTimeout, DriverStartError

logger = logging.getLogger(__name__)


# =============================================================================
# Legacy Device Support - Algorithm Configuration
# =============================================================================
# Lab images of older network operating systems often only speak CBC
# ciphers and SHA-1 key exchange. Modern algorithms stay preferred.

PREFERRED_CIPHERS = (
    "aes128-ctr",
    "aes192-ctr",
    "aes256-ctr",
    "aes128-gcm@openssh.com",
    "aes256-gcm@openssh.com",
    "chacha20-poly1305@openssh.com",
    "aes128-cbc",
    "aes192-cbc",
    "aes256-cbc",
    "3des-cbc",
)

PREFERRED_KEX = (
    "curve25519-sha256",
    "curve25519-sha256@libssh.org",
    "ecdh-sha2-nistp256",
    "ecdh-sha2-nistp384",
    "ecdh-sha2-nistp521",
    "diffie-hellman-group14-sha256",
    "diffie-hellman-group16-sha512",
    "diffie-hellman-group-exchange-sha256",
    "diffie-hellman-group14-sha1",
    "diffie-hellman-group-exchange-sha1",
    "diffie-hellman-group1-sha1",
)

PREFERRED_KEYS = (
    "rsa-sha2-512",
    "rsa-sha2-256",
    "ssh-rsa",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
    "ssh-ed25519",
)


def apply_legacy_algorithms(transport: paramiko.Transport) -> None:
    """
    Widen the algorithm lists of one transport for legacy devices.

    Only algorithms this Paramiko build supports are offered.
    """
    # Suppress deprecation warnings for legacy algorithms
    warnings.filterwarnings('ignore', category=DeprecationWarning, module='paramiko')

    options = transport.get_security_options()
    try:
        options.ciphers = tuple(
            c for c in PREFERRED_CIPHERS if c in paramiko.Transport._cipher_info
        )
        options.kex = tuple(
            k for k in PREFERRED_KEX if k in paramiko.Transport._kex_info
        )
        options.key_types = tuple(
            k for k in PREFERRED_KEYS if k in paramiko.Transport._key_info
        )
    except ValueError as e:
        logger.warning(f"Could not apply legacy algorithm settings: {e}")
        return

    logger.debug(
        f"Legacy algorithms: {len(options.ciphers)} ciphers, "
        f"{len(options.kex)} kex, {len(options.key_types)} keys"
    )


class DeviceShellDriver(BackendDriver):
    """
    SSH shell on a network device's management address.

    Authentication is keyboard-interactive: every server round becomes an
    AuthChallenge event and the connect thread blocks until the session
    answers it. When the server refuses keyboard-interactive and offers
    no methods (or offers password), a plain password attempt follows.

    Host keys are not verified.
    """

    READ_TIMEOUT = 0.25

    def __init__(self, settings: BridgeSettings):
        super().__init__()
        self.settings = settings
        self.ready_timeout = settings.auth_timeout

        self._transport: Optional[paramiko.Transport] = None
        self._channel: Optional[paramiko.Channel] = None
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self, handshake: HandshakeRequest) -> None:
        if self._thread is not None:
            raise RuntimeError("Driver already started")
        self._thread = threading.Thread(
            target=self._connect_thread,
            args=(handshake,),
            name=f"DeviceShellDriver-{handshake.target_address}",
            daemon=True,
        )
        self._thread.start()

    def write(self, data: bytes) -> None:
        channel = self._channel
        if channel is not None and not channel.closed:
            try:
                channel.sendall(data)
            except (OSError, paramiko.SSHException) as e:
                logger.error(f"Write error: {e}")

    def stop(self) -> None:
        with self._lock:
            if self._stop_event.is_set():
                return
            self._stop_event.set()
            channel, self._channel = self._channel, None
            transport, self._transport = self._transport, None

        if channel is not None:
            try:
                channel.close()
            except (OSError, paramiko.SSHException) as e:
                logger.debug(f"Channel close error: {e}")
        if transport is not None:
            transport.close()
        logger.info("DeviceShellDriver stopped")

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _emit_unless_stopped(self, event: SessionEvent) -> None:
        if not self._stop_event.is_set():
            self._emit(event)

    def _fail(self, error: Exception) -> None:
        if self._stop_event.is_set():
            logger.debug(f"Ignoring error after stop: {error}")
            return
        logger.error(f"Device connection failed: {error}")
        self._emit(DriverFailed(error))

    def _connect_thread(self, handshake: HandshakeRequest) -> None:
        address = handshake.target_address
        port = self.settings.device_port
        timeout = self.settings.auth_timeout

        try:
            logger.info(f"Connecting to {address}:{port} as {self.settings.device_user}")
            sock = socket.create_connection((address, port), timeout=timeout)

            transport = paramiko.Transport(sock)
            transport.banner_timeout = timeout
            transport.auth_timeout = timeout
            transport.handshake_timeout = timeout
            if self.settings.legacy_algorithms:
                apply_legacy_algorithms(transport)

            with self._lock:
                if self._stop_event.is_set():
                    transport.close()
                    return
                self._transport = transport

            transport.start_client(timeout=timeout)
            logger.debug(
                f"Negotiated: cipher={transport.remote_cipher}, "
                f"mac={transport.remote_mac}"
            )

            self._emit_unless_stopped(AuthenticationStarted())
            self._authenticate(transport)

            channel = transport.open_session(timeout=timeout)
            channel.get_pty(
                term=self.settings.term_type,
                width=handshake.columns,
                height=handshake.rows,
            )
            channel.invoke_shell()
            channel.settimeout(self.READ_TIMEOUT)

            with self._lock:
                if self._stop_event.is_set():
                    channel.close()
                    return
                self._channel = channel

        except (AuthenticationError, DriverStartError) as e:
            self._fail(e)
            return
        except paramiko.AuthenticationException as e:
            self._fail(AuthenticationError(str(e) or "Authentication failed"))
            return
        except socket.timeout:
            self._fail(AuthenticationTimeout())
            return
        except (OSError, EOFError, paramiko.SSHException) as e:
            self._fail(DriverStartError(f"SSH connection to {address} failed: {e}"))
            return

        logger.info(f"Shell opened on {address}")
        self._emit_unless_stopped(DriverReady())
        self._read_loop(channel)

    def _authenticate(self, transport: paramiko.Transport) -> None:
        """Keyboard-interactive with password fallback."""
        username = self.settings.device_user
        try:
            transport.auth_interactive(username, self._challenge_handler)
        except paramiko.BadAuthenticationType as e:
            allowed = list(e.allowed_types or [])
            if allowed and 'password' not in allowed:
                raise AuthenticationError(
                    f"No supported authentication method (server offers: {', '.join(allowed)})"
                ) from e
            logger.info("Keyboard-interactive refused, falling back to password")
            transport.auth_password(username, self.settings.device_password)

        if not transport.is_authenticated():
            raise AuthenticationError("Authentication failed")
        logger.info(f"Authenticated as {username}")

    def _challenge_handler(self, title: str, instructions: str, prompt_list) -> list[str]:
        """Paramiko interactive handler; runs on the transport thread."""
        prompts = [prompt for prompt, _echo in prompt_list]
        if not prompts:
            return []

        challenge = AuthChallenge(prompts=prompts, name=title, instructions=instructions)
        self._emit_unless_stopped(challenge)
        responses = challenge.wait(self.ready_timeout)
        if responses is None:
            logger.warning("Authentication challenge not answered in time")
            return [''] * len(prompts)
        return responses

    def _read_loop(self, channel: paramiko.Channel) -> None:
        size = self.settings.read_buffer_size
        while not self._stop_event.is_set():
            try:
                data = channel.recv(size)
            except socket.timeout:
                continue
            except (OSError, paramiko.SSHException) as e:
                logger.debug(f"Channel read error: {e}")
                break
            if not data:
                logger.info("Channel closed by remote")
                break
            self._emit_unless_stopped(DataReceived(data))

        with self._lock:
            if self._stop_event.is_set():
                return
            channel, self._channel = self._channel, None
            transport, self._transport = self._transport, None
        if channel is not None:
            channel.close()
        if transport is not None:
            transport.close()

        # Channel closure counts as an exit without a code
        self._emit_unless_stopped(ProcessExited())
