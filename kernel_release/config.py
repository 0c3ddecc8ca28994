"""Configuration settings for kernel_release.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
The settings object is frozen: it is built once per run and passed to
every workflow stage.
"""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_template_cache_dir() -> Path:
    """Return the default location of a locally cached AnyKernel3 tree."""
    return Path.home() / "android" / "AnyKernel3"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the KREL_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="KREL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Release naming
    zip_prefix: str = Field(
        default="Graveyard-v1-air",
        description="Fixed prefix of the release archive name",
    )
    timezone: str = Field(
        default="Asia/Kolkata",
        description="Timezone for build timestamps and the archive name",
    )

    # Source tree and kernel build
    source_dir: Path = Field(
        default_factory=Path.cwd,
        description="Kernel source tree; archives and logs are written here",
    )
    out_dir: Path = Field(
        default=Path("out"),
        description="Build output directory (relative to source_dir)",
    )
    log_file: Path = Field(
        default=Path("error.log"),
        description="Combined compile log (relative to source_dir)",
    )
    arch: str = Field(default="arm64", description="Kernel ARCH value")
    defconfig: str = Field(
        default="air_defconfig",
        description="Defconfig name under arch/<arch>/configs",
    )
    image_name: str = Field(
        default="Image.gz-dtb",
        description="Boot image make target and file name",
    )
    jobs: int | None = Field(
        default=None,
        ge=1,
        description="Parallel make jobs (uses all CPUs if not set)",
    )

    # Toolchain
    llvm_version: int = Field(
        default=18,
        ge=1,
        description="Minimum clang/LLVM major version",
    )
    llvm_installer_url: str = Field(
        default="https://apt.llvm.org/llvm.sh",
        description="LLVM apt installer script",
    )
    cross_compile: str = Field(default="aarch64-linux-gnu-")
    cross_compile_arm32: str = Field(default="arm-linux-gnueabi-")
    clang_triple: str = Field(default="aarch64-linux-gnu-")
    use_sudo: bool = Field(
        default=True,
        description="Prefix package installation commands with sudo",
    )

    # Build identity
    build_user: str = Field(default="MAdMiZ", description="KBUILD_BUILD_USER")
    build_host: str = Field(default="BlackArch", description="KBUILD_BUILD_HOST")
    git_user_name: str | None = Field(
        default=None,
        description="Global git user.name to configure before building",
    )
    git_user_email: str | None = Field(
        default=None,
        description="Global git user.email to configure before building",
    )

    # Packaging
    template_cache_dir: Path = Field(
        default_factory=_default_template_cache_dir,
        description="Local AnyKernel3 copy, used instead of cloning if present",
    )
    template_repo_url: str = Field(
        default="https://github.com/mizdrake7/AnyKernel3",
        description="AnyKernel3 repository cloned when no local copy exists",
    )
    template_branch: str = Field(default="master")
    template_staging_name: str = Field(
        default="AnyKernel3",
        description="Temporary packaging directory name inside source_dir",
    )

    # Upload
    telegram_api_base: str = Field(default="https://api.telegram.org")
    telegram_chat_id: str = Field(default="-1001304524669")
    oshi_base_url: str = Field(default="https://oshi.at")
    upload_timeout: int = Field(
        default=1800,
        ge=10,
        description="Timeout for upload requests (seconds)",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone {value!r}") from e
        return value

    @property
    def llvm_bin_dir(self) -> Path:
        """Directory holding the versioned LLVM binaries."""
        return Path(f"/usr/lib/llvm-{self.llvm_version}/bin")

    @property
    def out_path(self) -> Path:
        return self.source_dir / self.out_dir

    @property
    def log_path(self) -> Path:
        return self.source_dir / self.log_file

    @property
    def image_path(self) -> Path:
        """Expected location of the compiled boot image."""
        return self.out_path / "arch" / self.arch / "boot" / self.image_name

    @property
    def defconfig_path(self) -> Path:
        """Defconfig file inside the source tree."""
        return self.source_dir / "arch" / self.arch / "configs" / self.defconfig


def build_environment(
    settings: Settings,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Compose the environment passed to every child process.

    Args:
        settings: Effective settings.
        base: Environment to start from (defaults to os.environ).

    Returns:
        New mapping; the parent process environment is left untouched.
    """
    env = dict(os.environ if base is None else base)
    llvm_bin = str(settings.llvm_bin_dir)
    path = env.get("PATH")
    env.update(
        {
            "TZ": settings.timezone,
            "KBUILD_BUILD_USER": settings.build_user,
            "KBUILD_BUILD_HOST": settings.build_host,
            "PATH": f"{llvm_bin}{os.pathsep}{path}" if path else llvm_bin,
            "CROSS_COMPILE": settings.cross_compile,
            "CROSS_COMPILE_ARM32": settings.cross_compile_arm32,
        }
    )
    return env


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "build_environment", "get_settings", "print_settings_json"]
