"""Thin CLI wrapper for kernel_release.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import logging
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from kernel_release import __version__
from kernel_release.config import Settings, get_settings, print_settings_json
from kernel_release.errors import BuildError, ReleaseError
from kernel_release.executor import SubprocessExecutor
from kernel_release.types import RunMode
from kernel_release.workflow import ReleaseWorkflow

app = typer.Typer(
    name="kernel-release",
    help="Kernel Release - build, package and publish a device kernel",
)
console = Console()
logger = logging.getLogger(__name__)

QUIET_LOGGERS = ("httpx", "httpcore")


def setup_logging(level: str) -> None:
    """Install a rich log handler on the root logger."""
    from rich.logging import RichHandler

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Request lines carry the bot token in the URL path
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def load_settings() -> Settings:
    """Load settings, exiting with a short diagnostic when they are invalid."""
    try:
        return get_settings()
    except ValidationError as e:
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"])
            console.print(f"[red]Invalid setting {field}: {escape(error['msg'])}[/red]")
        raise typer.Exit(code=1) from None


def prompt_operator(text: str, hide_input: bool = False) -> str:
    """Read one answer from the operator; empty input is allowed."""
    return typer.prompt(text, default="", show_default=False, hide_input=hide_input)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"kernel-release version {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    regen: Annotated[
        bool,
        typer.Option(
            "--regen",
            "-r",
            help="Regenerate and persist the minimal defconfig, then exit",
        ),
    ] = False,
    clean: Annotated[
        bool,
        typer.Option("--clean", "-c", help="Remove prior build output first"),
    ] = False,
    skip_deps: Annotated[
        bool,
        typer.Option("--skip-deps", help="Do not install packages or LLVM"),
    ] = False,
    no_upload: Annotated[
        bool,
        typer.Option("--no-upload", help="Skip the interactive upload step"),
    ] = False,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Build the kernel, package a flashable zip and optionally upload it."""
    if ctx.invoked_subcommand is not None:
        return

    try:
        mode = RunMode.from_flags(regen=regen, clean=clean)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from None

    settings = load_settings()
    setup_logging(settings.log_level)

    workflow = ReleaseWorkflow(
        settings,
        executor=SubprocessExecutor(),
        console=console,
        prompt=prompt_operator,
        skip_deps=skip_deps,
    )

    try:
        workflow.run(mode, upload=not no_upload)
    except BuildError as e:
        logger.debug("Build failed (%s)", e.code)
        console.print(f"[red]{escape(e.message)}[/red]")
        if e.log_tail:
            console.print(
                f"[bold]Last {len(e.log_tail)} lines of {settings.log_file}:[/bold]"
            )
            for line in e.log_tail:
                console.print(escape(line), highlight=False)
        raise typer.Exit(code=1) from None
    except ReleaseError as e:
        logger.debug("Run failed (%s)", e.code)
        console.print(f"[red]{escape(e.message)}. Exiting...[/red]")
        raise typer.Exit(code=1) from None


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = load_settings()
    if json_output:
        console.print(print_settings_json(settings))
        return

    jobs_display = str(settings.jobs) if settings.jobs else "(all CPUs)"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Build:[/bold]")
    console.print(f"  Source directory:    {settings.source_dir}")
    console.print(f"  Output directory:    {settings.out_dir}")
    console.print(f"  Defconfig:           {settings.defconfig}")
    console.print(f"  Architecture:        {settings.arch}")
    console.print(f"  Image:               {settings.image_name}")
    console.print(f"  Jobs:                {jobs_display}")
    console.print()
    console.print("[bold]Toolchain:[/bold]")
    console.print(f"  LLVM version:        {settings.llvm_version}")
    console.print(f"  Cross compile:       {settings.cross_compile}")
    console.print(f"  Cross compile arm32: {settings.cross_compile_arm32}")
    console.print(f"  Build identity:      {settings.build_user}@{settings.build_host}")
    console.print(f"  Timezone:            {settings.timezone}")
    console.print()
    console.print("[bold]Packaging:[/bold]")
    console.print(f"  Archive prefix:      {settings.zip_prefix}")
    console.print(f"  Template cache:      {settings.template_cache_dir}")
    console.print(f"  Template repository: {settings.template_repo_url}")
    console.print()
    console.print("[bold]Upload:[/bold]")
    console.print(f"  Telegram chat:       {settings.telegram_chat_id}")
    console.print(f"  Oshi.at:             {settings.oshi_base_url}")
    console.print(f"  Upload timeout:      {settings.upload_timeout}")
    console.print(f"  Log level:           {settings.log_level}")


if __name__ == "__main__":
    app()
