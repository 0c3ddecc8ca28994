"""Shared fixtures: a fake command executor and isolated settings."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from io import StringIO
from pathlib import Path

import pytest
from rich.console import Console

from kernel_release.config import Settings
from kernel_release.executor import CommandError, CommandResult

TEMPLATE_FILES = {
    "anykernel.sh": "#!/bin/sh\n# AnyKernel3 installer\n",
    "META-INF/com/google/android/update-binary": "#!/sbin/sh\n",
    "tools/ak3-core.sh": "# core\n",
    "README.md": "# AnyKernel3\n",
    "modules/system/lib/modules/placeholder": "",
    "ramdisk/placeholder": "",
    ".git/HEAD": "ref: refs/heads/master\n",
    ".gitignore": "*.zip\n",
}


def write_template(root: Path, files: Mapping[str, str] = TEMPLATE_FILES) -> Path:
    """Create a small AnyKernel3-like tree under root."""
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


def _make_vars(args: Sequence[str]) -> dict[str, str]:
    return dict(a.split("=", 1) for a in args if "=" in a and not a.startswith("-"))


class FakeExecutor:
    """Records commands and simulates the external toolchain.

    Attributes:
        calls: Every command run, in order, as argument lists.
        fail_on: Command prefixes (without sudo) that exit 1.
    """

    def __init__(
        self,
        *,
        fail_on: Sequence[Sequence[str]] = (),
        available: Sequence[str] = ("clang", "git", "make"),
        clang_version: str = "Ubuntu clang version 18.1.3\nTarget: x86_64\n",
        inside_git: bool = False,
        revision: str = "a1b2c3d",
        compile_exit: int = 0,
        produce_image: bool = True,
        log_lines: Sequence[str] = ("  CC      init/main.o", "  LD      vmlinux"),
    ) -> None:
        self.calls: list[list[str]] = []
        self.logged_calls: list[list[str]] = []
        self.fail_on = [list(p) for p in fail_on]
        self.available = set(available)
        self.clang_version = clang_version
        self.inside_git = inside_git
        self.revision = revision
        self.compile_exit = compile_exit
        self.produce_image = produce_image
        self.log_lines = list(log_lines)

    @staticmethod
    def _strip_sudo(args: list[str]) -> list[str]:
        return args[1:] if args and args[0] == "sudo" else args

    def ran(self, *prefix: str) -> bool:
        """Whether any command (sudo stripped) started with prefix."""
        return any(
            self._strip_sudo(c)[: len(prefix)] == list(prefix)
            for c in self.calls + self.logged_calls
        )

    def _respond(self, args: list[str], cwd: Path | None) -> tuple[int, str]:
        bare = self._strip_sudo(args)
        if any(bare[: len(p)] == p for p in self.fail_on):
            return 1, ""

        if bare[:3] == ["git", "rev-parse", "--is-inside-work-tree"]:
            return (0, "true\n") if self.inside_git else (128, "")
        if bare[:2] == ["git", "rev-parse"]:
            return 0, f"{self.revision}\n"
        if bare[:2] == ["clang", "--version"]:
            return 0, self.clang_version
        if bare[:2] == ["git", "clone"]:
            write_template(Path(bare[-1]))
            return 0, ""
        if bare[:1] == ["make"] and "savedefconfig" in bare:
            out_dir = Path(cwd or ".") / _make_vars(bare)["O"]
            out_dir.mkdir(parents=True, exist_ok=True)
            (out_dir / "defconfig").write_text("CONFIG_LOCALVERSION=\"-test\"\n")
            return 0, ""
        return 0, ""

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
        self.calls.append(args)
        returncode, stdout = self._respond(args, cwd)
        if check and returncode != 0:
            raise CommandError(
                f"Command failed with exit code {returncode}: {' '.join(args)}",
                returncode=returncode,
            )
        return CommandResult(args=args, returncode=returncode, stdout=stdout)

    def run_logged(
        self,
        cmd: Sequence[str],
        log_path: Path,
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> int:
        args = [str(c) for c in cmd]
        self.logged_calls.append(args)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.write_text("".join(f"{line}\n" for line in self.log_lines))

        if self.produce_image:
            make_vars = _make_vars(args)
            out_dir = Path(cwd or ".") / make_vars["O"]
            boot_dir = out_dir / "arch" / make_vars["ARCH"] / "boot"
            boot_dir.mkdir(parents=True, exist_ok=True)
            (boot_dir / args[-1]).write_bytes(b"\x1f\x8b" + b"kernel" * 4096)
        return self.compile_exit

    def which(self, name: str, env: Mapping[str, str] | None = None) -> str | None:
        return f"/usr/bin/{name}" if name in self.available else None


class ScriptedPrompt:
    """Answers prompts from a fixed list and records what was asked."""

    def __init__(self, *answers: str) -> None:
        self.answers = list(answers)
        self.asked: list[tuple[str, bool]] = []

    def __call__(self, text: str, hide_input: bool = False) -> str:
        self.asked.append((text, hide_input))
        return self.answers.pop(0) if self.answers else ""


class FakeClock:
    """Monotonic clock returning queued readings (the last one repeats)."""

    def __init__(self, *readings: float) -> None:
        self.readings = list(readings) or [0.0]

    def __call__(self) -> float:
        if len(self.readings) > 1:
            return self.readings.pop(0)
        return self.readings[0]


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    """An empty kernel source tree."""
    path = tmp_path / "kernel"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path: Path, source_dir: Path) -> Settings:
    """Settings isolated to tmp_path with no cached template."""
    return Settings(
        source_dir=source_dir,
        template_cache_dir=tmp_path / "no-cache" / "AnyKernel3",
        jobs=8,
    )


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def console_output() -> StringIO:
    return StringIO()


@pytest.fixture
def console(console_output: StringIO) -> Console:
    """A console writing plain text into console_output."""
    return Console(file=console_output, width=200, color_system=None)
