"""Persistent shell session with sentinel-framed output capture.

shell-watcher runtime module v0.1.0

This module provides:
- One long-lived shell subprocess per session (env, cwd, aliases persist)
- Exact per-command output capture using a per-session sentinel
- Bounded reads (timeout) and EOF detection
- Reliable termination of the whole process group

Key design points:
- The sentinel is printed by the shell as a trailing command, so it lands on
  the same stream, after the command's own output
- stderr is merged into stdout, both arrive in order on one pipe
- POSIX: start_new_session=True so the shell and its children form a group
  that is killed together
- Reads are incremental (select + os.read) and the sentinel may span chunks
"""

from __future__ import annotations

import logging
import os
import select
import signal
import subprocess
import sys
import threading
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from ..config import DEFAULT_SHELL
from ..errors import (
    ExecTimeoutError,
    SpawnError,
    StreamClosedError,
    TerminationError,
)
from .sentinel import generate_sentinel

__all__ = [
    "DEFAULT_SHELL",
    "BASH_INIT_COMMANDS",
    "ShellSession",
    "default_init_commands",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Shell environment normalization run once after spawn
BASH_INIT_COMMANDS = "shopt -s expand_aliases\n[ -f ~/.bashrc ] && source ~/.bashrc"

# Forced locale, keeps subcommand output parse-stable
LOCALE_ENV = {"LC_ALL": "C"}

DEFAULT_INIT_TIMEOUT = 30.0  # seconds allowed for the init sequence
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL
READ_CHUNK_SIZE = 4096


def default_init_commands(shell: Sequence[str]) -> str:
    """Init sequence for a shell argv.

    bash gets alias expansion and the user's ~/.bashrc; other shells get
    nothing, since shopt/source are bash specific.
    """
    if shell and Path(shell[0]).name == "bash":
        return BASH_INIT_COMMANDS
    return ""


class ShellSession:
    """One persistent shell process and its framed output reader.

    Example:
        with ShellSession.start(["/bin/bash"]) as session:
            session.exec("cd /tmp", timeout=5)
            print(session.exec("pwd", timeout=5))  # "/tmp\\n"
    """

    def __init__(
        self,
        process: subprocess.Popen[bytes],
        argv: Sequence[str],
        *,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
    ) -> None:
        self._process = process
        self._argv = list(argv)
        self.kill_timeout = kill_timeout

        # One marker per session, never shared
        self._sentinel = generate_sentinel()
        self._sentinel_bytes = self._sentinel.encode("ascii")

        self._exec_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._terminated = False
        self._broken = False

    @classmethod
    def start(
        cls,
        shell: Sequence[str] = DEFAULT_SHELL,
        *,
        init_commands: str | None = None,
        env: Mapping[str, str] | None = None,
        cwd: Path | str | None = None,
        init_timeout: float = DEFAULT_INIT_TIMEOUT,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
    ) -> ShellSession:
        """Spawn a shell and run its init sequence.

        Args:
            shell: Shell argv (first element is the executable)
            init_commands: Normalization commands (None picks the default for
                the shell, "" skips the step)
            env: Extra environment variables (LC_ALL is always forced to C)
            cwd: Working directory for the shell
            init_timeout: Timeout for the init sequence
            kill_timeout: Seconds to wait for the shell to die on terminate()

        Returns:
            A ready session

        Raises:
            SpawnError: If the subprocess cannot be created
            ExecTimeoutError, StreamClosedError: If the init sequence fails
        """
        argv = list(shell)
        if not argv:
            raise SpawnError(argv, "shell argv must not be empty")

        merged_env = dict(os.environ)
        if env:
            merged_env.update({str(k): str(v) for k, v in env.items()})
        merged_env.update(LOCALE_ENV)

        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=merged_env,
                cwd=str(cwd) if cwd is not None else None,
                bufsize=0,
                close_fds=True,
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            raise SpawnError(argv, str(e)) from e

        logger.debug(f"Started shell pid={process.pid} argv={argv}")

        session = cls(process, argv, kill_timeout=kill_timeout)

        if init_commands is None:
            init_commands = default_init_commands(argv)
        if init_commands:
            try:
                init_output = session.exec(init_commands, timeout=init_timeout)
            except BaseException:
                session.terminate()
                raise
            logger.debug(
                f"Shell init done pid={process.pid} output_len={len(init_output)}"
            )

        return session

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def argv(self) -> list[str]:
        return list(self._argv)

    @property
    def sentinel(self) -> str:
        return self._sentinel

    @property
    def is_alive(self) -> bool:
        return self._process.poll() is None

    @property
    def is_terminated(self) -> bool:
        return self._terminated

    def exec(self, command_text: str, timeout: float) -> str:
        """Run text in the shell and return its combined output.

        Writes the command, then a printf of the sentinel, and reads until the
        sentinel shows up. Calls are serialized; at most one read is in flight.

        Args:
            command_text: Shell text (may span several lines)
            timeout: Seconds to wait for the sentinel

        Returns:
            Output before the sentinel, decoded as UTF-8

        Raises:
            ExecTimeoutError: If the sentinel is not seen within timeout
            StreamClosedError: If the shell output ended or the session is unusable
        """
        if timeout <= 0:
            raise ValueError("timeout must be > 0")

        with self._exec_lock:
            try:
                if self._terminated or self._broken:
                    raise StreamClosedError(
                        command_text, message="Shell session is no longer usable"
                    )
                try:
                    self._write_command(command_text)
                    return self._read_until_sentinel(command_text, timeout)
                except (ExecTimeoutError, StreamClosedError):
                    self._broken = True
                    raise
            finally:
                if self._terminated:
                    self._close_pipes()

    def _write_command(self, command_text: str) -> None:
        stdin = self._process.stdin
        if stdin is None:
            raise StreamClosedError(command_text, message="Shell stdin is closed")

        payload = (
            f"{command_text}\n"
            f"printf '%s' '{self._sentinel}'\n"
        ).encode("utf-8")
        try:
            stdin.write(payload)
            stdin.flush()
        except (BrokenPipeError, ValueError, OSError) as e:
            raise StreamClosedError(
                command_text, message=f"Cannot write to shell stdin: {e}"
            ) from e

    def _read_until_sentinel(self, command_text: str, timeout: float) -> str:
        stdout = self._process.stdout
        if stdout is None:
            raise StreamClosedError(command_text, message="Shell stdout is closed")

        fd = stdout.fileno()
        marker = self._sentinel_bytes
        deadline = time.monotonic() + timeout
        buffer = bytearray()
        search_from = 0

        while True:
            index = buffer.find(marker, search_from)
            if index != -1:
                trailing = len(buffer) - index - len(marker)
                if trailing:
                    logger.debug(f"Discarded {trailing} byte(s) after output boundary")
                return bytes(buffer[:index]).decode("utf-8", errors="replace")

            # Keep a marker-sized overlap so a split sentinel still matches
            search_from = max(0, len(buffer) - len(marker) + 1)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ExecTimeoutError(
                    command_text, timeout, self._decode_partial(buffer)
                )

            try:
                readable, _, _ = select.select([fd], [], [], remaining)
            except (OSError, ValueError) as e:
                raise StreamClosedError(
                    command_text, self._decode_partial(buffer), f"Shell stdout unreadable: {e}"
                ) from e
            if not readable:
                continue

            try:
                chunk = os.read(fd, READ_CHUNK_SIZE)
            except OSError as e:
                raise StreamClosedError(
                    command_text, self._decode_partial(buffer), f"Shell stdout unreadable: {e}"
                ) from e
            if not chunk:
                raise StreamClosedError(command_text, self._decode_partial(buffer))
            buffer.extend(chunk)

    @staticmethod
    def _decode_partial(buffer: bytearray) -> str:
        return bytes(buffer).decode("utf-8", errors="replace")

    def terminate(self) -> bool:
        """Force-kill the shell and its process group.

        Idempotent. Never raises; a process that survives the kill is logged.

        Returns:
            True if the shell is gone, False if it could not be confirmed dead
        """
        with self._state_lock:
            if self._terminated:
                return True
            self._terminated = True

        process = self._process
        pid = process.pid
        logger.debug(f"Terminating shell pid={pid}")

        try:
            if process.poll() is None:
                self._kill(process)
                try:
                    process.wait(timeout=self.kill_timeout)
                except subprocess.TimeoutExpired:
                    logger.warning(str(TerminationError(pid)))
                    return False
            logger.debug(f"Shell terminated pid={pid} returncode={process.returncode}")
            return True
        finally:
            # A concurrent exec closes the pipes itself when it finishes
            if self._exec_lock.acquire(blocking=False):
                try:
                    self._close_pipes()
                finally:
                    self._exec_lock.release()

    def _kill(self, process: subprocess.Popen[bytes]) -> None:
        """Send SIGKILL to the shell's process group."""
        if IS_WINDOWS:
            process.kill()
            return
        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGKILL)
            logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            process.kill()

    def _close_pipes(self) -> None:
        for stream in (self._process.stdin, self._process.stdout):
            if stream is None:
                continue
            try:
                stream.close()
            except OSError as e:
                logger.debug(f"Error closing shell pipe: {e}")

    def __enter__(self) -> ShellSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.terminate()

    def __repr__(self) -> str:
        state = "terminated" if self._terminated else ("broken" if self._broken else "ready")
        return f"ShellSession(pid={self.pid}, argv={self._argv[0]!r}, {state})"
