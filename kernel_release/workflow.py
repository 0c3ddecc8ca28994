"""Release workflow orchestration.

This module provides the high-level API:
- ReleaseWorkflow.run(): prepare, provision, build, package, report, upload

Each stage raises a ReleaseError subclass on failure; nothing is retried.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import httpx
from rich.console import Console
from rich.markup import escape

from kernel_release.builds.runner import (
    BuildResult,
    clean_output,
    compile_kernel,
    configure,
    regenerate_defconfig,
)
from kernel_release.config import build_environment
from kernel_release.deps import configure_git_identity, ensure_llvm, ensure_packages
from kernel_release.executor import SubprocessExecutor
from kernel_release.naming import compute_artifact_name, get_short_revision, now_in
from kernel_release.packaging import package_release
from kernel_release.types import ArtifactInfo, RunMode, RunResult, UploadDestination
from kernel_release.upload import upload_to_oshi, upload_to_telegram

if TYPE_CHECKING:
    from kernel_release.config import Settings
    from kernel_release.executor import CommandExecutor

logger = logging.getLogger(__name__)

UPLOAD_MENU_PROMPT = (
    "Enter 1 to upload to Telegram, or press any key to upload to Oshi.at"
)
TOKEN_PROMPT = "Enter the bot token"


class Prompt(Protocol):
    """Asks the operator for a line of input."""

    def __call__(self, text: str, hide_input: bool = False) -> str: ...


class ReleaseWorkflow:
    """Runs one build-and-release pass.

    Settings and the child environment are fixed at construction; every
    external effect goes through the executor, the HTTP client factory or
    the prompt, so tests can substitute all three.
    """

    def __init__(
        self,
        settings: Settings,
        executor: CommandExecutor | None = None,
        console: Console | None = None,
        prompt: Prompt | None = None,
        client_factory: Callable[[], httpx.Client] | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] | None = None,
        skip_deps: bool = False,
    ) -> None:
        self.settings = settings
        self.executor: CommandExecutor = executor or SubprocessExecutor()
        self.console = console or Console()
        self.prompt: Prompt = prompt or self._console_prompt
        self.client_factory = client_factory or self._default_client
        self.clock = clock
        self.now = now or (lambda: now_in(settings.timezone))
        self.skip_deps = skip_deps
        self.env = build_environment(settings)

    def _default_client(self) -> httpx.Client:
        return httpx.Client(timeout=self.settings.upload_timeout)

    def _console_prompt(self, text: str, hide_input: bool = False) -> str:
        return self.console.input(f"{text}: ", password=hide_input)

    def _say(self, message: str, style: str | None = None) -> None:
        self.console.print()
        self.console.print(escape(message), style=style)

    # Stages

    def prepare_environment(self) -> None:
        """Apply process-external setup that the build depends on."""
        logger.debug(
            "Build identity %s@%s, TZ=%s",
            self.settings.build_user,
            self.settings.build_host,
            self.settings.timezone,
        )
        configure_git_identity(self.executor, self.settings, self.env)

    def ensure_dependencies(self) -> None:
        """Install build packages and, if needed, the LLVM toolchain."""
        if self.skip_deps:
            logger.info("Skipping dependency installation")
            return

        self._say("Installing required packages and toolchains...")
        ensure_packages(self.executor, self.settings, self.env)
        with self.client_factory() as client:
            installed = ensure_llvm(self.executor, client, self.settings, self.env)
        if not installed:
            self._say(f"LLVM {self.settings.llvm_version} is already installed.")

    def artifact_name(self) -> str:
        """Name of the archive this run will produce."""
        revision = get_short_revision(
            self.executor, self.settings.source_dir, self.env
        )
        return compute_artifact_name(self.settings.zip_prefix, self.now(), revision)

    def regenerate(self) -> Path:
        """Persist a minimized defconfig back into the source tree."""
        target = regenerate_defconfig(self.executor, self.settings, self.env)
        self._say("Regenerated defconfig successfully.", style="green")
        return target

    def build(self, clean: bool = False) -> BuildResult:
        """Configure and compile, optionally from a clean output directory."""
        if clean:
            self._say("Cleaning build directory...")
            clean_output(self.settings)

        configure(self.executor, self.settings, self.env)
        self._say("Starting kernel compilation...")
        result = compile_kernel(self.executor, self.settings, self.env)
        logger.info(
            "Compiled in %.1fs: %s", result.duration_seconds, result.command
        )
        return result

    def package(self, build: BuildResult, archive_name: str) -> ArtifactInfo:
        """Wrap the compiled image into the release archive."""
        self._say("Kernel compiled successfully! Preparing ZIP...", style="green")
        return package_release(
            self.executor, self.settings, self.env, build.image_path, archive_name
        )

    def report(self, result: RunResult) -> None:
        """Print elapsed time, archive name, size and checksum."""
        artifact = result.artifact
        if artifact is None:
            return
        self.console.print()
        self.console.print(
            f"[bold green]Completed in {result.elapsed_display}![/bold green]"
        )
        self.console.print(f"ZIP: {escape(artifact.filename)}")
        self.console.print(f"Size: {artifact.size_mb:.2f} MB")
        self.console.print(f"SHA-256: {artifact.sha256}")

    def choose_destination(self) -> UploadDestination:
        """Ask the operator where to publish the archive."""
        return UploadDestination.from_choice(self.prompt(UPLOAD_MENU_PROMPT))

    def upload(
        self,
        artifact: ArtifactInfo,
        destination: UploadDestination,
    ) -> str:
        """Publish the archive to the chosen destination.

        Returns:
            The service response.
        """
        if destination is UploadDestination.TELEGRAM:
            token = self.prompt(TOKEN_PROMPT, hide_input=True)
            self._say("Uploading to Telegram...")
            with self.client_factory() as client:
                response = upload_to_telegram(
                    client,
                    artifact.path,
                    token=token,
                    chat_id=self.settings.telegram_chat_id,
                    api_base=self.settings.telegram_api_base,
                    timeout=self.settings.upload_timeout,
                )
            self._say("Uploaded to Telegram successfully.", style="green")
            return response

        self._say("Uploading to Oshi.at...")
        with self.client_factory() as client:
            response = upload_to_oshi(
                client,
                artifact.path,
                base_url=self.settings.oshi_base_url,
                timeout=self.settings.upload_timeout,
            )
        self._say(f"Uploaded to Oshi.at: {response}", style="green")
        return response

    # Dispatch

    def run(self, mode: RunMode = RunMode.NORMAL, upload: bool = True) -> RunResult:
        """Execute the workflow for one run mode.

        Args:
            mode: Run mode, dispatched once.
            upload: Whether to offer the interactive upload step.

        Returns:
            RunResult for the run.

        Raises:
            ReleaseError: On the first unrecoverable failure.
        """
        started = self.clock()
        logger.info("Starting %s run in %s", mode.value, self.settings.source_dir)

        self.prepare_environment()
        self.ensure_dependencies()
        archive_name = self.artifact_name()
        logger.info("Release archive will be %s", archive_name)

        if mode is RunMode.REGENERATE_CONFIG:
            self.regenerate()
            return RunResult(
                mode=mode,
                success=True,
                elapsed_seconds=self.clock() - started,
            )

        build = self.build(clean=mode is RunMode.CLEAN_BUILD)
        artifact = self.package(build, archive_name)
        result = RunResult(
            mode=mode,
            success=True,
            elapsed_seconds=self.clock() - started,
            log_path=build.log_path,
            artifact=artifact,
        )
        self.report(result)

        if upload:
            destination = self.choose_destination()
            result.upload_destination = destination
            result.upload_response = self.upload(artifact, destination)
        return result


__all__ = [
    "Prompt",
    "ReleaseWorkflow",
    "TOKEN_PROMPT",
    "UPLOAD_MENU_PROMPT",
]
