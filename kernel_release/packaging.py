"""Flashable archive packaging.

This module handles:
- Obtaining the AnyKernel3 template (local copy or git clone)
- Staging the boot image into it
- Writing the release zip
- Computing the archive checksum
"""

from __future__ import annotations

import fnmatch
import hashlib
import logging
import shutil
import zipfile
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from kernel_release.errors import (
    ARCHIVE_FAILED,
    TEMPLATE_UNAVAILABLE,
    PackagingError,
)
from kernel_release.executor import CommandError
from kernel_release.types import ArtifactInfo

if TYPE_CHECKING:
    from kernel_release.config import Settings
    from kernel_release.executor import CommandExecutor

logger = logging.getLogger(__name__)

# Relative paths matching these never go into the archive
EXCLUDE_PATTERNS = ["*.git*", "README.md"]
# File names matching these never go into the archive
EXCLUDE_NAME_PATTERNS = ["*placeholder"]

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def is_excluded(relative_path: str) -> bool:
    """Check whether a template entry is left out of the archive.

    Args:
        relative_path: POSIX path relative to the template root.
    """
    if any(fnmatch.fnmatch(relative_path, p) for p in EXCLUDE_PATTERNS):
        return True
    name = relative_path.rsplit("/", 1)[-1]
    return any(fnmatch.fnmatch(name, p) for p in EXCLUDE_NAME_PATTERNS)


def compute_file_hash(file_path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Compute SHA-256 hash of a file."""
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def obtain_template(
    executor: CommandExecutor,
    settings: Settings,
    env: Mapping[str, str],
    staging_dir: Path,
) -> Path:
    """Populate staging_dir with the packaging template.

    A cached local copy is preferred; otherwise the template repository is
    cloned.

    Raises:
        PackagingError: If neither source is available.
    """
    if staging_dir.exists():
        shutil.rmtree(staging_dir)

    cache_dir = settings.template_cache_dir
    if cache_dir.is_dir():
        logger.info("Using cached template from %s", cache_dir)
        try:
            shutil.copytree(cache_dir, staging_dir, symlinks=True)
        except OSError as e:
            raise PackagingError(
                f"Failed to copy template from {cache_dir}: {e}",
                code=TEMPLATE_UNAVAILABLE,
            ) from e
    else:
        logger.info("Cloning template from %s", settings.template_repo_url)
        try:
            executor.run(
                ["git", "clone", "-q", settings.template_repo_url, str(staging_dir)],
                env=env,
            )
        except CommandError as e:
            raise PackagingError(
                f"Failed to clone {settings.template_repo_url}: {e}",
                code=TEMPLATE_UNAVAILABLE,
            ) from e

    if (staging_dir / ".git").exists():
        # A missing branch leaves the current checkout in place
        executor.run(
            ["git", "checkout", settings.template_branch],
            cwd=staging_dir,
            env=env,
            check=False,
        )
    return staging_dir


def remove_old_archives(directory: Path) -> list[Path]:
    """Delete zip files left in directory by earlier runs."""
    removed = []
    for path in sorted(directory.glob("*.zip")):
        if path.is_file():
            logger.debug("Removing old archive %s", path.name)
            path.unlink()
            removed.append(path)
    return removed


def create_archive(template_dir: Path, archive_path: Path) -> Path:
    """Compress template_dir into archive_path at maximum deflate level.

    Raises:
        PackagingError: If the archive cannot be written.
    """
    logger.info("Creating %s", archive_path.name)

    try:
        with zipfile.ZipFile(
            archive_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
        ) as zf:
            for path in sorted(template_dir.rglob("*")):
                relative = path.relative_to(template_dir).as_posix()
                if not path.is_file() or is_excluded(relative):
                    continue
                zf.write(path, relative)
    except (OSError, zipfile.BadZipFile) as e:
        archive_path.unlink(missing_ok=True)
        raise PackagingError(
            f"Failed to create {archive_path.name}: {e}",
            code=ARCHIVE_FAILED,
        ) from e

    return archive_path


def package_release(
    executor: CommandExecutor,
    settings: Settings,
    env: Mapping[str, str],
    image_path: Path,
    archive_name: str,
) -> ArtifactInfo:
    """Build the flashable zip for a compiled boot image.

    Args:
        executor: Command executor.
        settings: Effective settings.
        env: Child process environment.
        image_path: Compiled boot image.
        archive_name: File name of the release archive.

    Returns:
        ArtifactInfo describing the written archive.

    Raises:
        PackagingError: If the template is unavailable or zipping fails.
    """
    work_dir = settings.source_dir
    staging_dir = work_dir / settings.template_staging_name
    archive_path = work_dir / archive_name

    try:
        obtain_template(executor, settings, env, staging_dir)
        try:
            shutil.copy2(image_path, staging_dir / image_path.name)
            remove_old_archives(work_dir)
        except OSError as e:
            raise PackagingError(
                f"Failed to stage {image_path.name}: {e}",
                code=ARCHIVE_FAILED,
            ) from e
        create_archive(staging_dir, archive_path)
    finally:
        shutil.rmtree(staging_dir, ignore_errors=True)

    return ArtifactInfo(
        path=archive_path,
        size_bytes=archive_path.stat().st_size,
        sha256=compute_file_hash(archive_path),
    )


__all__ = [
    "EXCLUDE_NAME_PATTERNS",
    "EXCLUDE_PATTERNS",
    "compute_file_hash",
    "create_archive",
    "is_excluded",
    "obtain_template",
    "package_release",
    "remove_old_archives",
]
