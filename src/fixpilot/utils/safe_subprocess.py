"""Safe subprocess wrapper for external syntax checkers.

This module provides a wrapper around checker binaries (``node --check`` and
friends) that:
- Never uses shell=True
- Resolves the binary once, up front
- Enforces a timeout on every invocation
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass

import structlog

from fixpilot.utils.async_helpers import FixPilotError

log = structlog.get_logger()


class CommandError(FixPilotError):
    """Base exception for checker command errors."""


class BinaryNotFoundError(CommandError):
    """Raised when the checker binary is not installed."""


class CommandTimeoutError(CommandError):
    """Raised when a command times out."""


@dataclass
class CommandResult:
    """Result of a checker command execution."""

    stdout: str
    stderr: str
    return_code: int
    command: list[str]

    @property
    def success(self) -> bool:
        """Return True if the command succeeded."""
        return self.return_code == 0


class SafeCommandRunner:
    """Run one external binary with list arguments and a hard timeout.

    Example:
        node = SafeCommandRunner("node", default_timeout=10)
        result = node.run(["--check", "/tmp/app.js"])
        if not result.success:
            print(result.stderr)
    """

    DEFAULT_TIMEOUT = 10

    def __init__(
        self,
        binary: str,
        binary_path: str | None = None,
        default_timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the runner.

        Args:
            binary: Name of the binary to look up on PATH.
            binary_path: Explicit path to the binary. If None, uses PATH.
            default_timeout: Default timeout for commands in seconds.

        Raises:
            BinaryNotFoundError: If the binary is not found.
        """
        resolved_path = binary_path or shutil.which(binary)
        if not resolved_path:
            raise BinaryNotFoundError(f"{binary} not found on PATH")

        self._binary_path: str = resolved_path
        self._default_timeout = default_timeout

    @property
    def binary_path(self) -> str:
        return self._binary_path

    def run(self, args: list[str], timeout: int | None = None) -> CommandResult:
        """Run the binary with ``args``.

        Args:
            args: Command arguments (without the binary itself).
            timeout: Timeout in seconds (uses default if None).

        Returns:
            CommandResult with stdout, stderr, and return code.

        Raises:
            CommandTimeoutError: If the command times out.
            CommandError: If the process cannot be started.
        """
        cmd = [self._binary_path, *args]
        effective_timeout = timeout or self._default_timeout

        log.debug("executing_command", command=cmd, timeout=effective_timeout)

        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=effective_timeout,
                shell=False,
            )
        except subprocess.TimeoutExpired as e:
            log.error("command_timeout", command=cmd, timeout=effective_timeout)
            raise CommandTimeoutError(
                f"Command timed out after {effective_timeout}s: {cmd}"
            ) from e
        except OSError as e:
            log.error("command_start_failed", command=cmd, error=str(e))
            raise CommandError(f"Could not run {cmd[0]}: {e}") from e

        return CommandResult(
            stdout=proc.stdout,
            stderr=proc.stderr,
            return_code=proc.returncode,
            command=cmd,
        )
