"""Host dependency provisioning.

This module handles:
- Installing the build packages with apt-get
- Detecting the installed clang major version
- Downloading and running the LLVM apt installer when clang is missing or
  too old
- Optional global git identity setup
"""

from __future__ import annotations

import logging
import re
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from kernel_release.errors import (
    DEPENDENCY_INSTALL_FAILED,
    TOOLCHAIN_INSTALL_FAILED,
    ProvisioningError,
)
from kernel_release.executor import CommandError

if TYPE_CHECKING:
    from kernel_release.config import Settings
    from kernel_release.executor import CommandExecutor

logger = logging.getLogger(__name__)

# Packages needed to cross-compile and package an arm64 kernel
REQUIRED_PACKAGES = [
    "gcc-aarch64-linux-gnu",
    "gcc-arm-linux-gnueabi",
    "binutils",
    "make",
    "lld",
    "llvm",
    "python3",
    "libssl-dev",
    "build-essential",
    "bc",
    "bison",
    "flex",
    "unzip",
    "ca-certificates",
    "xz-utils",
    "mkbootimg",
    "cpio",
    "device-tree-compiler",
    "git",
    "git-lfs",
    "curl",
    "wget",
    "libelf-dev",
    "jq",
]

# Timeout for fetching the installer script (seconds)
INSTALLER_TIMEOUT = 60

_VERSION_TOKEN = re.compile(r"\d+")


def _privileged(cmd: list[str], use_sudo: bool) -> list[str]:
    return ["sudo", *cmd] if use_sudo else cmd


def parse_major_version(version_output: str) -> int | None:
    """Return the first integer token of a version banner.

    Args:
        version_output: Output of e.g. `clang --version`.

    Returns:
        The leading integer, or None if the text holds no digits.
    """
    match = _VERSION_TOKEN.search(version_output)
    if match is None:
        return None
    return int(match.group())


def needs_toolchain_install(version_output: str | None, required: int) -> bool:
    """Decide whether the LLVM toolchain must be (re)installed.

    Args:
        version_output: `clang --version` output, or None if clang is absent.
        required: Minimum major version.

    Returns:
        True if no compiler was found, its version cannot be parsed, or its
        major version is strictly below `required`.
    """
    if version_output is None:
        return True
    major = parse_major_version(version_output)
    if major is None:
        return True
    return major < required


def ensure_packages(
    executor: CommandExecutor,
    settings: Settings,
    env: Mapping[str, str],
    packages: list[str] | None = None,
) -> None:
    """Refresh package lists and install the build packages.

    Raises:
        ProvisioningError: If apt-get fails.
    """
    packages = packages if packages is not None else REQUIRED_PACKAGES
    logger.info("Installing %d required packages", len(packages))

    try:
        executor.run(
            _privileged(["apt-get", "update", "-y"], settings.use_sudo),
            env=env,
            capture=False,
        )
        executor.run(
            _privileged(["apt-get", "install", "-y", *packages], settings.use_sudo),
            env=env,
            capture=False,
        )
    except CommandError as e:
        raise ProvisioningError(
            f"Failed to install required packages: {e}",
            code=DEPENDENCY_INSTALL_FAILED,
        ) from e


def installed_clang_version(
    executor: CommandExecutor,
    env: Mapping[str, str],
) -> str | None:
    """Return the `clang --version` banner, or None if clang is unavailable."""
    if executor.which("clang", env) is None:
        logger.debug("clang not found on PATH")
        return None

    try:
        result = executor.run(["clang", "--version"], env=env, check=False)
    except CommandError:
        return None
    if not result.ok:
        return None
    return result.stdout


def download_installer(client: httpx.Client, url: str, dest_path: Path) -> Path:
    """Fetch the LLVM installer script.

    Raises:
        ProvisioningError: If the script cannot be downloaded.
    """
    logger.info("Downloading LLVM installer from %s", url)

    try:
        response = client.get(url, timeout=INSTALLER_TIMEOUT, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise ProvisioningError(
            f"HTTP error downloading {url}: {e.response.status_code}",
            code=TOOLCHAIN_INSTALL_FAILED,
        ) from e
    except httpx.RequestError as e:
        raise ProvisioningError(
            f"Network error downloading {url}: {e}",
            code=TOOLCHAIN_INSTALL_FAILED,
        ) from e

    dest_path.write_bytes(response.content)
    return dest_path


def install_llvm(
    executor: CommandExecutor,
    client: httpx.Client,
    settings: Settings,
    env: Mapping[str, str],
) -> None:
    """Install LLVM `settings.llvm_version` via the upstream apt script.

    Raises:
        ProvisioningError: If download or installation fails.
    """
    with tempfile.TemporaryDirectory(prefix="llvm-installer-") as tmp:
        script = download_installer(
            client, settings.llvm_installer_url, Path(tmp) / "llvm.sh"
        )
        try:
            executor.run(
                _privileged(
                    ["bash", str(script), str(settings.llvm_version)],
                    settings.use_sudo,
                ),
                env=env,
                capture=False,
            )
        except CommandError as e:
            raise ProvisioningError(
                f"Failed to install LLVM {settings.llvm_version}: {e}",
                code=TOOLCHAIN_INSTALL_FAILED,
            ) from e


def ensure_llvm(
    executor: CommandExecutor,
    client: httpx.Client,
    settings: Settings,
    env: Mapping[str, str],
) -> bool:
    """Install LLVM if clang is missing or older than required.

    Returns:
        True if an installation was performed.
    """
    version_output = installed_clang_version(executor, env)
    if not needs_toolchain_install(version_output, settings.llvm_version):
        logger.info("LLVM %d is already installed", settings.llvm_version)
        return False

    logger.info("Installing LLVM %d", settings.llvm_version)
    install_llvm(executor, client, settings, env)
    return True


def configure_git_identity(
    executor: CommandExecutor,
    settings: Settings,
    env: Mapping[str, str],
) -> None:
    """Set the global git identity when one is configured."""
    identity = {
        "user.name": settings.git_user_name,
        "user.email": settings.git_user_email,
    }
    for key, value in identity.items():
        if value:
            executor.run(["git", "config", "--global", key, value], env=env)


__all__ = [
    "REQUIRED_PACKAGES",
    "configure_git_identity",
    "download_installer",
    "ensure_llvm",
    "ensure_packages",
    "install_llvm",
    "installed_clang_version",
    "needs_toolchain_install",
    "parse_major_version",
]
