"""Command execution for installer steps.

Wraps ``subprocess.run`` with a uniform result type, optional privilege
elevation through sudo and per-call timeouts.
"""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)

# Exit codes reported when the process could not run to completion
EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127

DEFAULT_TIMEOUT = 120.0


@dataclass
class CommandResult:
    """Outcome of a command invocation."""

    command: str
    args: List[str] = field(default_factory=list)
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def failed(self) -> bool:
        return not self.succeeded

    def output(self) -> str:
        """Stripped stdout."""
        return self.stdout.strip()

    def lines(self) -> List[str]:
        """Non-empty stdout lines."""
        return [line for line in self.stdout.splitlines() if line.strip()]

    def error_message(self) -> str:
        """Best description of a failure for error messages."""
        if self.timed_out:
            return f"{self.command} timed out"
        text = self.stderr.strip() or self.stdout.strip()
        if text:
            return text
        return f"{self.command} exited with code {self.exit_code}"

    def command_line(self) -> str:
        return " ".join([self.command] + list(self.args))


class CommandExecutor:
    """Runs external commands.

    Usage:
        executor = CommandExecutor()
        result = executor.execute("uname", "-r")
        if result.succeeded:
            kernel = result.output()
    """

    def __init__(self, timeout: Optional[float] = DEFAULT_TIMEOUT, use_sudo: bool = True):
        """Initialize executor.

        Args:
            timeout: Default timeout in seconds (None disables it)
            use_sudo: Prefix elevated commands with sudo when not running as root
        """
        self.timeout = timeout
        self.use_sudo = use_sudo

    def execute(self, cmd: str, *args: str, timeout: Optional[float] = None) -> CommandResult:
        """Run a command as the current user."""
        return self._run([cmd, *args], timeout=timeout)

    def execute_elevated(
        self, cmd: str, *args: str, timeout: Optional[float] = None
    ) -> CommandResult:
        """Run a command with root privileges."""
        argv = [cmd, *args]
        if self.use_sudo and not self.is_root():
            argv = ["sudo", "-n", *argv]
        return self._run(argv, timeout=timeout, display=(cmd, list(args)))

    def execute_with_input(
        self,
        input_data: str,
        cmd: str,
        *args: str,
        timeout: Optional[float] = None,
        elevated: bool = False,
    ) -> CommandResult:
        """Run a command feeding ``input_data`` on stdin."""
        argv = [cmd, *args]
        if elevated and self.use_sudo and not self.is_root():
            argv = ["sudo", "-n", *argv]
        return self._run(argv, timeout=timeout, input_data=input_data, display=(cmd, list(args)))

    def command_exists(self, cmd: str) -> bool:
        return shutil.which(cmd) is not None

    @staticmethod
    def is_root() -> bool:
        return hasattr(os, "geteuid") and os.geteuid() == 0

    def _run(
        self,
        argv: List[str],
        timeout: Optional[float] = None,
        input_data: Optional[str] = None,
        display=None,
    ) -> CommandResult:
        command, args = display if display else (argv[0], argv[1:])
        effective_timeout = timeout if timeout is not None else self.timeout
        result = CommandResult(command=command, args=list(args))

        logger.debug(f"Running: {' '.join(argv)}")
        start = time.monotonic()
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                input=input_data,
                timeout=effective_timeout,
                check=False,
            )
            result.exit_code = completed.returncode
            result.stdout = completed.stdout or ""
            result.stderr = completed.stderr or ""
        except subprocess.TimeoutExpired as e:
            logger.warning(f"Command timed out after {effective_timeout}s: {command}")
            result.exit_code = EXIT_TIMEOUT
            result.timed_out = True
            result.stderr = _decode(e.stderr)
        except FileNotFoundError:
            logger.debug(f"Command not found: {argv[0]}")
            result.exit_code = EXIT_NOT_FOUND
            result.stderr = f"{argv[0]}: command not found"
        finally:
            result.duration = time.monotonic() - start

        if result.failed:
            logger.debug(f"{command} exited with {result.exit_code}: {result.stderr.strip()}")
        return result


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data
