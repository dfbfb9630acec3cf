"""Command execution for querying WireGuard state on the host or in a container."""

import logging
import os
import subprocess
import time
from enum import Enum
from threading import Event
from typing import Optional, Sequence

from wgexporter.config import ExporterConfig

logger = logging.getLogger(__name__)

# Poll interval while waiting on a child process
POLL_INTERVAL = 0.1

PERMISSION_MARKERS = ('operation not permitted', 'permission denied')
CONTAINER_MARKERS = (
    'no such container',
    'is not running',
    'cannot connect to the docker daemon',
)
NOT_FOUND_MARKERS = ('executable file not found', 'command not found', 'no such file or directory')


class ExecErrorReason(str, Enum):
    """Why a command invocation failed."""

    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    CONTAINER_UNAVAILABLE = "container_unavailable"
    NON_ZERO_EXIT = "non_zero_exit"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class ExecError(Exception):
    """A state query command could not produce output."""

    def __init__(self, reason: ExecErrorReason, command: Sequence[str], detail: str = ""):
        self.reason = reason
        self.command = list(command)
        self.detail = detail.strip()
        message = f"{' '.join(self.command)}: {reason.value}"
        if self.detail:
            message = f"{message} ({self.detail})"
        super().__init__(message)


class CommandTimeout(ExecError):
    """Command ran past its deadline and was killed."""

    def __init__(self, command: Sequence[str], timeout: float):
        super().__init__(ExecErrorReason.TIMEOUT, command, f"exceeded {timeout:g}s")


class CommandCancelled(ExecError):
    """Command was killed because the caller went away."""

    def __init__(self, command: Sequence[str]):
        super().__init__(ExecErrorReason.CANCELLED, command)


class StateSource:
    """Runs WireGuard query commands and returns their stdout.

    Subclasses decide how a command line is wrapped. Tests substitute a
    fake that returns canned output.
    """

    def command_line(self, args: Sequence[str]) -> list[str]:
        """Full argv for running args on this target."""
        return list(args)

    def execute(
        self,
        args: Sequence[str],
        timeout: Optional[float] = None,
        cancel: Optional[Event] = None,
    ) -> str:
        """Run a command and return its stdout.

        Args:
            args: Command and arguments, e.g. ['wg', 'show', 'interfaces']
            timeout: Seconds before the child is killed
            cancel: Event that kills the child when set

        Returns:
            Captured stdout text

        Raises:
            ExecError: Command missing or not runnable, not permitted, or exited non-zero
            CommandTimeout: Timeout elapsed
            CommandCancelled: Cancel event was set
        """
        cmd = self.command_line(args)
        logger.debug(f"Running: {' '.join(cmd)}")

        env = {**os.environ, 'LANG': 'C', 'LC_ALL': 'C'}

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                encoding='utf-8',
                errors='replace',
                env=env
            )
        except FileNotFoundError as e:
            raise self._missing_binary(cmd, e) from e
        except PermissionError as e:
            raise ExecError(ExecErrorReason.PERMISSION_DENIED, cmd, str(e)) from e
        except OSError as e:
            # e.g. ENOEXEC: the binary exists but cannot be run
            raise self._missing_binary(cmd, e) from e

        stdout, stderr = self._wait(process, cmd, timeout, cancel)

        if process.returncode != 0:
            raise ExecError(self.classify(process.returncode, stderr), cmd, stderr)

        return stdout

    def _wait(
        self,
        process: subprocess.Popen,
        cmd: list[str],
        timeout: Optional[float],
        cancel: Optional[Event],
    ) -> tuple[str, str]:
        """Wait for the child, killing it on deadline or cancel.

        Returns:
            Tuple of (stdout, stderr)
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            if cancel is not None and cancel.is_set():
                self._kill(process)
                raise CommandCancelled(cmd)

            wait = POLL_INTERVAL if cancel is not None else None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._kill(process)
                    raise CommandTimeout(cmd, timeout)
                wait = remaining if wait is None else min(wait, remaining)

            try:
                return process.communicate(timeout=wait)
            except subprocess.TimeoutExpired:
                continue

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        process.kill()
        process.communicate()

    def _missing_binary(self, cmd: list[str], error: OSError) -> ExecError:
        return ExecError(ExecErrorReason.NOT_FOUND, cmd, str(error))

    def classify(self, returncode: int, stderr: str) -> ExecErrorReason:
        """Map a failed exit to an ExecErrorReason."""
        text = stderr.lower()
        if any(marker in text for marker in PERMISSION_MARKERS):
            return ExecErrorReason.PERMISSION_DENIED
        if returncode == 127:
            return ExecErrorReason.NOT_FOUND
        return ExecErrorReason.NON_ZERO_EXIT

    def wg(self, *args: str, timeout: Optional[float] = None, cancel: Optional[Event] = None) -> str:
        """Run a `wg` subcommand."""
        return self.execute(['wg', *args], timeout=timeout, cancel=cancel)

    def ip(self, *args: str, timeout: Optional[float] = None, cancel: Optional[Event] = None) -> str:
        """Run an `ip` subcommand."""
        return self.execute(['ip', *args], timeout=timeout, cancel=cancel)

    def describe(self) -> str:
        """Human-readable name of the target, for logs and diagnostics."""
        return "host"


class HostStateSource(StateSource):
    """Runs commands directly on the host."""


class ContainerStateSource(StateSource):
    """Runs commands inside a docker container via `docker exec`."""

    def __init__(self, container: str):
        self.container = container

    def command_line(self, args: Sequence[str]) -> list[str]:
        return ['docker', 'exec', self.container, *args]

    def _missing_binary(self, cmd: list[str], error: OSError) -> ExecError:
        # docker itself is missing, so the container cannot be reached
        return ExecError(ExecErrorReason.CONTAINER_UNAVAILABLE, cmd, str(error))

    def classify(self, returncode: int, stderr: str) -> ExecErrorReason:
        text = stderr.lower()
        if any(marker in text for marker in CONTAINER_MARKERS):
            return ExecErrorReason.CONTAINER_UNAVAILABLE
        if any(marker in text for marker in PERMISSION_MARKERS):
            return ExecErrorReason.PERMISSION_DENIED
        if returncode in (126, 127) or any(marker in text for marker in NOT_FOUND_MARKERS):
            return ExecErrorReason.NOT_FOUND
        return ExecErrorReason.NON_ZERO_EXIT

    def is_running(self, timeout: Optional[float] = None) -> bool:
        """Check whether the container is listed by `docker ps`."""
        try:
            output = HostStateSource().execute(
                ['docker', 'ps', '--format', '{{.Names}}'], timeout=timeout
            )
        except ExecError as e:
            logger.debug(f"docker ps failed: {e}")
            return False
        return self.container in output.split()

    def describe(self) -> str:
        return f"container '{self.container}'"


def create_state_source(config: ExporterConfig) -> StateSource:
    """Pick the execution strategy for the configured target.

    Args:
        config: ExporterConfig object

    Returns:
        ContainerStateSource when a container is configured, else HostStateSource
    """
    if config.container_mode:
        return ContainerStateSource(config.docker_container)
    return HostStateSource()
