"""Command execution for external tools.

Every external program the workflow touches (apt-get, make, git, the LLVM
installer) runs through a CommandExecutor. The workflow only depends on the
protocol, so tests substitute a fake that records commands and simulates
their outcome.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, TextIO

from kernel_release.errors import EXECUTION_ERROR, ReleaseError

logger = logging.getLogger(__name__)


class CommandError(ReleaseError):
    """Raised when a checked command exits non-zero or cannot be started."""

    def __init__(
        self,
        message: str,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
        code: str = EXECUTION_ERROR,
    ) -> None:
        super().__init__(message, code)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


@dataclass
class CommandResult:
    """Result of a finished command."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandExecutor(Protocol):
    """Interface used by the workflow to run external programs."""

    def run(
        self,
        cmd: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        capture: bool = True,
    ) -> CommandResult:
        """Run a command to completion."""
        ...

    def run_logged(
        self,
        cmd: Sequence[str],
        log_path: Path,
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> int:
        """Run a command, tee-ing combined output to the console and a log."""
        ...

    def which(self, name: str, env: Mapping[str, str] | None = None) -> str | None:
        """Locate a program on the (child) search path."""
        ...


class SubprocessExecutor:
    """CommandExecutor backed by the subprocess module."""

    def __init__(self, echo: TextIO | None = None) -> None:
        self._echo = echo

    @property
    def echo(self) -> TextIO:
        return self._echo if self._echo is not None else sys.stdout

    def run(
        self,
        cmd: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        capture: bool = True,
    ) -> CommandResult:
        args = [str(c) for c in cmd]
        cmd_str = shlex.join(args)
        logger.debug("Running: %s (cwd=%s)", cmd_str, cwd)

        try:
            result = subprocess.run(
                args,
                cwd=cwd,
                env=dict(env) if env is not None else None,
                capture_output=capture,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except OSError as e:
            raise CommandError(f"Failed to run {cmd_str}: {e}") from e

        completed = CommandResult(
            args=args,
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )
        if check and not completed.ok:
            logger.error("Command failed (exit %d): %s", completed.returncode, cmd_str)
            raise CommandError(
                f"Command failed with exit code {completed.returncode}: {cmd_str}",
                returncode=completed.returncode,
                stdout=completed.stdout,
                stderr=completed.stderr,
            )
        return completed

    def run_logged(
        self,
        cmd: Sequence[str],
        log_path: Path,
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> int:
        args = [str(c) for c in cmd]
        cmd_str = shlex.join(args)
        logger.info("Executing: %s", cmd_str)
        logger.info("Log file: %s", log_path)

        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open("w", encoding="utf-8", errors="replace") as log_file:
                proc = subprocess.Popen(
                    args,
                    cwd=cwd,
                    env=dict(env) if env is not None else None,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    encoding="utf-8",
                    errors="replace",
                    bufsize=1,
                )
                try:
                    assert proc.stdout is not None
                    with proc.stdout:
                        for line in proc.stdout:
                            self.echo.write(line)
                            log_file.write(line)
                    return proc.wait()
                finally:
                    if proc.poll() is None:
                        proc.kill()
                        proc.wait()
        except OSError as e:
            raise CommandError(f"Failed to run {cmd_str}: {e}") from e

    def which(self, name: str, env: Mapping[str, str] | None = None) -> str | None:
        path = env.get("PATH") if env is not None else None
        return shutil.which(name, path=path)


__all__ = [
    "CommandError",
    "CommandExecutor",
    "CommandResult",
    "SubprocessExecutor",
]
