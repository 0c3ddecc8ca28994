"""Build runner for the kernel make targets.

This module handles:
- Composing `make` commands for defconfig, savedefconfig and the image
- Regenerating the stored defconfig
- Cleaning the output directory
- Executing the compile with output tee'd to a log file
- Surfacing the log tail on failure
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from kernel_release.errors import (
    CLEAN_FAILED,
    COMPILE_FAILED,
    DEFCONFIG_FAILED,
    IMAGE_MISSING,
    BuildError,
)
from kernel_release.executor import CommandError

if TYPE_CHECKING:
    from kernel_release.config import Settings
    from kernel_release.executor import CommandExecutor

logger = logging.getLogger(__name__)

# LLVM replacements for the binutils the kernel build would otherwise use
LLVM_TOOLS = {
    "CC": "clang",
    "LD": "ld.lld",
    "AR": "llvm-ar",
    "AS": "llvm-as",
    "NM": "llvm-nm",
    "OBJCOPY": "llvm-objcopy",
    "OBJDUMP": "llvm-objdump",
    "STRIP": "llvm-strip",
}

# Lines of build log shown when compilation fails
LOG_TAIL_LINES = 20


@dataclass
class BuildResult:
    """Result of a kernel compile.

    Attributes:
        success: Whether the compile succeeded and produced the image.
        exit_code: make exit code.
        image_path: Expected boot image location.
        log_path: Path to the build log file.
        started_at: Build start time.
        finished_at: Build finish time.
        command: The command that was executed.
    """

    success: bool
    exit_code: int
    image_path: Path
    log_path: Path
    started_at: datetime
    finished_at: datetime
    command: str

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


def _base_make_args(settings: Settings) -> list[str]:
    return [f"O={settings.out_dir}", f"ARCH={settings.arch}"]


def compose_defconfig_command(settings: Settings) -> list[str]:
    """Compose the command that expands the defconfig into .config."""
    return ["make", *_base_make_args(settings), settings.defconfig]


def compose_savedefconfig_command(settings: Settings) -> list[str]:
    """Compose the command that minimizes .config back into a defconfig."""
    return ["make", *_base_make_args(settings), settings.defconfig, "savedefconfig"]


def compose_compile_command(settings: Settings, jobs: int | None = None) -> list[str]:
    """Compose the parallel clang compile command for the boot image.

    Args:
        settings: Effective settings.
        jobs: Parallel jobs; defaults to settings.jobs, then the CPU count.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    jobs = jobs or settings.jobs or os.cpu_count() or 1
    cmd = ["make", f"-j{jobs}", *_base_make_args(settings)]
    cmd.extend(f"{var}={tool}" for var, tool in LLVM_TOOLS.items())
    cmd.extend(
        [
            f"CROSS_COMPILE={settings.cross_compile}",
            f"CROSS_COMPILE_ARM32={settings.cross_compile_arm32}",
            f"CLANG_TRIPLE={settings.clang_triple}",
            "LLVM=1",
            settings.image_name,
        ]
    )
    return cmd


def tail_log(log_path: Path, lines: int = LOG_TAIL_LINES) -> list[str]:
    """Return the last `lines` lines of a log file (empty if missing)."""
    if not log_path.exists():
        return []
    with log_path.open(errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=lines)]


def clean_output(settings: Settings) -> bool:
    """Remove the build output directory.

    Returns:
        True if a directory was removed, False if it did not exist.
    """
    out_path = settings.out_path
    if not out_path.exists():
        logger.debug("Output directory %s already clean", out_path)
        return False

    logger.info("Cleaning build directory %s", out_path)
    try:
        shutil.rmtree(out_path)
    except OSError as e:
        raise BuildError(
            f"Failed to clean build directory {out_path}: {e}", code=CLEAN_FAILED
        ) from e
    return True


def configure(
    executor: CommandExecutor,
    settings: Settings,
    env: Mapping[str, str],
) -> None:
    """Materialize the target defconfig into the output directory.

    Raises:
        BuildError: If the defconfig step fails.
    """
    try:
        settings.out_path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise BuildError(
            f"Cannot create build directory {settings.out_path}: {e}",
            code=DEFCONFIG_FAILED,
        ) from e

    try:
        executor.run(
            compose_defconfig_command(settings),
            cwd=settings.source_dir,
            env=env,
            capture=False,
        )
    except CommandError as e:
        raise BuildError(
            f"Failed to set defconfig {settings.defconfig}",
            code=DEFCONFIG_FAILED,
            exit_code=e.returncode,
        ) from e


def regenerate_defconfig(
    executor: CommandExecutor,
    settings: Settings,
    env: Mapping[str, str],
) -> Path:
    """Run savedefconfig and copy the result back into the source tree.

    Returns:
        Path of the updated defconfig in the source tree.

    Raises:
        BuildError: If savedefconfig fails or produces nothing.
    """
    try:
        executor.run(
            compose_savedefconfig_command(settings),
            cwd=settings.source_dir,
            env=env,
            capture=False,
        )
    except CommandError as e:
        raise BuildError(
            f"Failed to regenerate defconfig {settings.defconfig}",
            code=DEFCONFIG_FAILED,
            exit_code=e.returncode,
        ) from e

    generated = settings.out_path / "defconfig"
    if not generated.is_file():
        raise BuildError(
            f"savedefconfig did not produce {generated}",
            code=DEFCONFIG_FAILED,
        )

    target = settings.defconfig_path
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(generated, target)
    except OSError as e:
        raise BuildError(
            f"Failed to write {target}: {e}", code=DEFCONFIG_FAILED
        ) from e
    logger.info("Regenerated %s", target)
    return target


def compile_kernel(
    executor: CommandExecutor,
    settings: Settings,
    env: Mapping[str, str],
    jobs: int | None = None,
) -> BuildResult:
    """Compile the boot image.

    Args:
        executor: Command executor.
        settings: Effective settings.
        env: Child process environment.
        jobs: Optional parallel jobs override.

    Returns:
        BuildResult for a successful compile.

    Raises:
        BuildError: If make fails or the boot image is missing afterwards;
            the error carries the tail of the build log.
    """
    cmd = compose_compile_command(settings, jobs)
    cmd_str = shlex.join(cmd)
    log_path = settings.log_path
    image_path = settings.image_path

    started_at = datetime.now(timezone.utc)
    try:
        exit_code = executor.run_logged(
            cmd, log_path, cwd=settings.source_dir, env=env
        )
    except CommandError as e:
        raise BuildError(
            f"Failed to execute compile: {e}",
            code=COMPILE_FAILED,
            log_tail=tail_log(log_path),
        ) from e
    finished_at = datetime.now(timezone.utc)

    if exit_code != 0:
        logger.error(
            "Compile failed with exit code %d. See log: %s", exit_code, log_path
        )
        raise BuildError(
            f"Compilation failed with exit code {exit_code}",
            code=COMPILE_FAILED,
            log_tail=tail_log(log_path),
            exit_code=exit_code,
        )

    if not image_path.is_file():
        logger.error("Expected image %s is missing. See log: %s", image_path, log_path)
        raise BuildError(
            f"Compilation failed: {image_path.name} was not produced",
            code=IMAGE_MISSING,
            log_tail=tail_log(log_path),
            exit_code=exit_code,
        )

    return BuildResult(
        success=True,
        exit_code=exit_code,
        image_path=image_path,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
        command=cmd_str,
    )


__all__ = [
    "BuildResult",
    "LLVM_TOOLS",
    "clean_output",
    "compile_kernel",
    "compose_compile_command",
    "compose_defconfig_command",
    "compose_savedefconfig_command",
    "configure",
    "regenerate_defconfig",
    "tail_log",
]
