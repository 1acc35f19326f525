"""
Pseudo-terminal process transport.

Spawns a child process attached to a PTY and exposes blocking reads with
a timeout, so reader threads sleep in the kernel instead of polling.
Two implementations:

- PexpectPTY: pexpect.spawn in binary mode (default)
- UnixPTY: pty.openpty + subprocess.Popen
"""

from __future__ import annotations
import os
import sys
import subprocess
import logging
from abc import ABC, abstractmethod
from typing import Optional

import pexpect

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == 'win32'

if not IS_WINDOWS:
    import pty
    import fcntl
    import termios
    import struct
    import select

DEFAULT_TERM = 'xterm-256color'


class PTYTransport(ABC):
    """
    Abstract PTY interface.

    read() blocks for at most `timeout` seconds and returns b'' when no
    data arrived. Once the child side of the terminal is gone it raises
    EOFError; exit_code / signal_status are available after close().
    """

    @abstractmethod
    def spawn(
        self,
        command: list[str],
        env: dict = None,
        dimensions: tuple[int, int] = (24, 80),
        echo: bool = True,
    ) -> None:
        """
        Spawn process with PTY.

        Args:
            command: Command and arguments to execute
            env: Extra environment variables on top of os.environ
            dimensions: (rows, cols) of the terminal
            echo: Whether the local PTY echoes input
        """
        pass

    @abstractmethod
    def read(self, size: int = 4096, timeout: Optional[float] = None) -> bytes:
        """Read up to `size` bytes, waiting at most `timeout` seconds."""
        pass

    @abstractmethod
    def write(self, data: bytes) -> int:
        """Write raw bytes. Returns number of bytes written."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close PTY and terminate process."""
        pass

    @property
    @abstractmethod
    def is_alive(self) -> bool:
        """Check if process is still running."""
        pass

    @property
    @abstractmethod
    def exit_code(self) -> Optional[int]:
        """Exit code if the process exited normally."""
        pass

    @property
    @abstractmethod
    def signal_status(self) -> Optional[int]:
        """Terminating signal if the process was killed."""
        pass


def _spawn_env(env: Optional[dict]) -> dict:
    spawn_env = os.environ.copy()
    if env:
        spawn_env.update(env)
    spawn_env.setdefault('TERM', DEFAULT_TERM)
    return spawn_env


class PexpectPTY(PTYTransport):
    """PTY implementation using pexpect."""

    def __init__(self):
        self._child: Optional[pexpect.spawn] = None
        self._exit_code: Optional[int] = None
        self._signal: Optional[int] = None

    def spawn(self, command, env=None, dimensions=(24, 80), echo=True) -> None:
        self._child = pexpect.spawn(
            command[0],
            args=list(command[1:]),
            env=_spawn_env(env),
            encoding=None,  # Binary mode
            dimensions=dimensions,
            echo=echo,
        )
        logger.debug(f"Spawned PID {self._child.pid} via pexpect: {' '.join(command)}")

    def read(self, size: int = 4096, timeout: Optional[float] = None) -> bytes:
        if self._child is None:
            raise EOFError("PTY closed")
        try:
            return self._child.read_nonblocking(size, timeout=timeout)
        except pexpect.TIMEOUT:
            return b''
        except pexpect.EOF:
            raise EOFError("PTY closed by child") from None

    def write(self, data: bytes) -> int:
        if self._child is None:
            return 0
        try:
            return self._child.send(data)
        except OSError as e:
            logger.debug(f"Write error: {e}")
            return 0

    def close(self) -> None:
        if self._child is None:
            return
        try:
            self._child.close(force=True)
        except (OSError, pexpect.ExceptionPexpect) as e:
            logger.debug(f"Close error: {e}")
        self._exit_code = self._child.exitstatus
        self._signal = self._child.signalstatus
        self._child = None

    @property
    def is_alive(self) -> bool:
        if self._child is None:
            return False
        return self._child.isalive()

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    @property
    def signal_status(self) -> Optional[int]:
        return self._signal


class UnixPTY(PTYTransport):
    """
    Unix PTY implementation using subprocess + pty.

    Uses subprocess.Popen with start_new_session=True and preexec_fn
    to make the PTY the controlling terminal of the child.
    """

    CLOSE_GRACE = 1.0

    def __init__(self):
        self._master_fd: Optional[int] = None
        self._proc: Optional[subprocess.Popen] = None

    def spawn(self, command, env=None, dimensions=(24, 80), echo=True) -> None:
        spawn_env = _spawn_env(env)

        self._master_fd, slave_fd = pty.openpty()
        slave_name = os.ttyname(slave_fd)

        rows, cols = dimensions
        fcntl.ioctl(slave_fd, termios.TIOCSWINSZ, struct.pack('HHHH', rows, cols, 0, 0))

        if not echo:
            attrs = termios.tcgetattr(slave_fd)
            attrs[3] &= ~termios.ECHO
            termios.tcsetattr(slave_fd, termios.TCSANOW, attrs)

        tiocsctty = getattr(termios, 'TIOCSCTTY', 0x540E)

        def setup_child():
            # start_new_session already called setsid(); the first tty
            # opened afterwards becomes the controlling terminal
            new_slave = os.open(slave_name, os.O_RDWR)
            try:
                fcntl.ioctl(new_slave, tiocsctty, 0)
            except OSError:
                # already the controlling tty; no logging in the forked child
                pass
            os.dup2(new_slave, 0)
            os.dup2(new_slave, 1)
            os.dup2(new_slave, 2)
            if new_slave > 2:
                os.close(new_slave)

        try:
            self._proc = subprocess.Popen(
                command,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                preexec_fn=setup_child,
                env=spawn_env,
                close_fds=True,
            )
        except OSError:
            os.close(self._master_fd)
            self._master_fd = None
            raise
        finally:
            os.close(slave_fd)

        logger.debug(f"Spawned PID {self._proc.pid}: {' '.join(command)}")

    def read(self, size: int = 4096, timeout: Optional[float] = None) -> bytes:
        if self._master_fd is None:
            raise EOFError("PTY closed")
        r, _, _ = select.select([self._master_fd], [], [], timeout)
        if not r:
            return b''
        try:
            data = os.read(self._master_fd, size)
        except OSError as e:
            # EIO on the master means the slave side is gone
            raise EOFError(f"PTY closed by child: {e}") from None
        if not data:
            raise EOFError("PTY closed by child")
        return data

    def write(self, data: bytes) -> int:
        if self._master_fd is None:
            return 0
        try:
            return os.write(self._master_fd, data)
        except OSError as e:
            logger.debug(f"Write error: {e}")
            return 0

    def close(self) -> None:
        if self._master_fd is not None:
            try:
                os.close(self._master_fd)
            except OSError as e:
                logger.debug(f"Master fd close error: {e}")
            self._master_fd = None

        if self._proc is not None and self._proc.poll() is None:
            try:
                self._proc.terminate()
            except OSError as e:
                logger.debug(f"Terminate failed: {e}")

            try:
                self._proc.wait(timeout=self.CLOSE_GRACE)
            except subprocess.TimeoutExpired:
                try:
                    self._proc.kill()
                except OSError as e:
                    logger.debug(f"Kill failed: {e}")
                self._proc.wait()

    @property
    def is_alive(self) -> bool:
        if self._proc is None:
            return False
        return self._proc.poll() is None

    @property
    def exit_code(self) -> Optional[int]:
        if self._proc is None or self._proc.returncode is None:
            return None
        rc = self._proc.returncode
        return rc if rc >= 0 else None

    @property
    def signal_status(self) -> Optional[int]:
        if self._proc is None or self._proc.returncode is None:
            return None
        rc = self._proc.returncode
        return -rc if rc < 0 else None


PTY_BACKENDS = {
    'pexpect': PexpectPTY,
    'pty': UnixPTY,
}


def create_pty(backend: str = 'pexpect') -> PTYTransport:
    """
    Factory for a PTY transport.

    Args:
        backend: 'pexpect' (default) or 'pty'

    Raises:
        RuntimeError: PTYs are not available on this platform
        ValueError: Unknown backend name
    """
    if not is_pty_available():
        raise RuntimeError("PTY support requires a Unix host")
    try:
        cls = PTY_BACKENDS[backend]
    except KeyError:
        raise ValueError(
            f"Unknown PTY backend {backend!r} (expected one of: {', '.join(PTY_BACKENDS)})"
        ) from None
    logger.debug(f"Using {cls.__name__}")
    return cls()


def is_pty_available() -> bool:
    """Check if PTY support is available on current platform."""
    return not IS_WINDOWS
