"""Release archive naming."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from kernel_release.executor import CommandError

if TYPE_CHECKING:
    from kernel_release.executor import CommandExecutor

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M"
REVISION_LENGTH = 7


def get_short_revision(
    executor: CommandExecutor,
    source_dir: Path,
    env: Mapping[str, str] | None = None,
) -> str | None:
    """Return the abbreviated HEAD hash if source_dir is a git checkout.

    Returns:
        Short revision, or None outside a work tree (or without git).
    """
    try:
        inside = executor.run(
            ["git", "rev-parse", "--is-inside-work-tree"],
            cwd=source_dir,
            env=env,
            check=False,
        )
        if not inside.ok or inside.stdout.strip() != "true":
            return None

        head = executor.run(
            ["git", "rev-parse", f"--short={REVISION_LENGTH}", "HEAD"],
            cwd=source_dir,
            env=env,
            check=False,
        )
    except CommandError as e:
        logger.debug("git unavailable, skipping revision suffix: %s", e)
        return None

    revision = head.stdout.strip()
    if not head.ok or not revision:
        return None
    return revision


def compute_artifact_name(
    prefix: str,
    now: datetime,
    revision: str | None = None,
) -> str:
    """Compose `<prefix>-<YYYYMMDD-HHMM>[-<revision>].zip`."""
    name = f"{prefix}-{now.strftime(TIMESTAMP_FORMAT)}"
    if revision:
        name = f"{name}-{revision}"
    return f"{name}.zip"


def now_in(timezone: str) -> datetime:
    """Current time in the named IANA timezone."""
    return datetime.now(ZoneInfo(timezone))


__all__ = [
    "TIMESTAMP_FORMAT",
    "compute_artifact_name",
    "get_short_revision",
    "now_in",
]
