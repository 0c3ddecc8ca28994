"""Shared type definitions for kernel_release.

This module contains enums and dataclasses shared across modules to avoid
circular imports.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class RunMode(str, Enum):
    """How a workflow run is dispatched."""

    NORMAL = "normal"
    REGENERATE_CONFIG = "regenerate-config"
    CLEAN_BUILD = "clean-build"

    @classmethod
    def from_flags(cls, regen: bool = False, clean: bool = False) -> "RunMode":
        """Map the mutually exclusive CLI flags onto a run mode.

        Raises:
            ValueError: If both flags are set.
        """
        if regen and clean:
            raise ValueError("--regen and --clean are mutually exclusive")
        if regen:
            return cls.REGENERATE_CONFIG
        if clean:
            return cls.CLEAN_BUILD
        return cls.NORMAL


class UploadDestination(str, Enum):
    """Where a finished archive is published."""

    TELEGRAM = "telegram"
    OSHI = "oshi"

    @classmethod
    def from_choice(cls, choice: str) -> "UploadDestination":
        """Interpret the operator's menu answer.

        Only an exact "1" selects Telegram; anything else, including empty
        or mistyped input, falls back to Oshi.at.
        """
        if choice.strip() == "1":
            return cls.TELEGRAM
        return cls.OSHI


@dataclass
class ArtifactInfo:
    """Information about a release archive."""

    path: Path
    size_bytes: int
    sha256: str

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def size_mb(self) -> float:
        return self.size_bytes / 1048576


@dataclass
class RunResult:
    """Outcome of one workflow run."""

    mode: RunMode
    success: bool
    elapsed_seconds: float
    log_path: Path | None = None
    artifact: ArtifactInfo | None = None
    upload_destination: UploadDestination | None = None
    upload_response: str | None = None

    @property
    def elapsed_display(self) -> str:
        """Elapsed wall-clock time as minutes and seconds."""
        total = int(self.elapsed_seconds)
        return f"{total // 60} minute(s) and {total % 60} second(s)"


__all__ = [
    "ArtifactInfo",
    "RunMode",
    "RunResult",
    "UploadDestination",
]
