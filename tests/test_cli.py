"""Tests for the CLI.

These tests drive the Typer app with a fake executor so no toolchain,
package manager or network is touched.
"""

import io
import json
import logging
from unittest.mock import patch

import httpx
import pytest
import respx
from conftest import FakeExecutor
from typer.testing import CliRunner

from kernel_release import __version__
from kernel_release.cli import QUIET_LOGGERS, app, setup_logging
from kernel_release.upload import upload_to_telegram

runner = CliRunner()

OSHI_PATTERN = r"https://oshi\.at/Graveyard-v1-air-\d{8}-\d{4}\.zip"


@pytest.fixture
def cli_env(tmp_path, source_dir):
    return {
        "KREL_SOURCE_DIR": str(source_dir),
        "KREL_TEMPLATE_CACHE_DIR": str(tmp_path / "no-cache"),
        "KREL_LOG_LEVEL": "WARNING",
    }


def invoke(args, env, executor=None, input=None):
    executor = executor or FakeExecutor()
    with patch("kernel_release.cli.SubprocessExecutor", return_value=executor):
        return runner.invoke(app, args, env=env, input=input)


@pytest.fixture
def restore_logging():
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    quiet_levels = {name: logging.getLogger(name).level for name in QUIET_LOGGERS}
    yield
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)
    for name, quiet_level in quiet_levels.items():
        logging.getLogger(name).setLevel(quiet_level)


class TestSetupLogging:
    """Test the rich logging setup."""

    @respx.mock
    def test_bot_token_not_logged(self, restore_logging, tmp_path) -> None:
        archive = tmp_path / "k.zip"
        archive.write_bytes(b"PK")
        respx.post("https://api.telegram.org/botSECRET123/sendDocument").mock(
            return_value=httpx.Response(200, json={"ok": True})
        )
        setup_logging("INFO")
        stream = io.StringIO()
        logging.getLogger().addHandler(logging.StreamHandler(stream))

        with httpx.Client() as client:
            upload_to_telegram(client, archive, "SECRET123", "-100")

        output = stream.getvalue()
        assert "Uploading k.zip to Telegram chat -100" in output
        assert "SECRET123" not in output


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "--regen" in result.stdout
        assert "--clean" in result.stdout

    def test_version_flag(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_command(self, cli_env) -> None:
        result = runner.invoke(app, ["config"], env=cli_env)
        assert result.exit_code == 0
        assert "Build:" in result.stdout
        assert "Toolchain:" in result.stdout
        assert "Packaging:" in result.stdout
        assert "Upload:" in result.stdout
        assert "air_defconfig" in result.stdout

    def test_config_json(self, cli_env, source_dir) -> None:
        result = runner.invoke(app, ["config", "--json"], env=cli_env)
        assert result.exit_code == 0
        parsed = json.loads(result.stdout)
        assert parsed["source_dir"] == str(source_dir)

    def test_config_does_not_build(self, cli_env) -> None:
        executor = FakeExecutor()
        result = invoke(["config"], cli_env, executor)
        assert result.exit_code == 0
        assert executor.calls == []


class TestCLIRun:
    """Test the build run entry point."""

    def test_regen_and_clean_conflict(self, cli_env) -> None:
        result = invoke(["-r", "-c"], cli_env)
        assert result.exit_code == 2

    def test_invalid_timezone_exits_one(self, cli_env) -> None:
        executor = FakeExecutor()
        result = invoke(
            ["--skip-deps"], {**cli_env, "KREL_TIMEZONE": "Mars/Base"}, executor
        )

        assert result.exit_code == 1
        assert "Invalid setting timezone" in result.stdout
        assert executor.calls == []

    def test_regen_exits_zero(self, cli_env, source_dir) -> None:
        executor = FakeExecutor()
        result = invoke(["--regen", "--skip-deps"], cli_env, executor)

        assert result.exit_code == 0
        assert "Regenerated defconfig successfully" in result.stdout
        assert (source_dir / "arch/arm64/configs/air_defconfig").is_file()
        assert executor.logged_calls == []

    def test_no_upload(self, cli_env, source_dir) -> None:
        result = invoke(["--skip-deps", "--no-upload"], cli_env)

        assert result.exit_code == 0
        assert "Completed in" in result.stdout
        assert len(list(source_dir.glob("*.zip"))) == 1

    @respx.mock
    def test_default_input_uploads_to_oshi(self, cli_env) -> None:
        route = respx.put(url__regex=OSHI_PATTERN).mock(
            return_value=httpx.Response(200, text="https://oshi.at/Zz/k.zip")
        )

        result = invoke(["-c", "--skip-deps"], cli_env, input="\n")

        assert result.exit_code == 0
        assert route.called
        assert "Enter the bot token" not in result.stdout
        assert "Uploaded to Oshi.at: https://oshi.at/Zz/k.zip" in result.stdout

    @respx.mock
    def test_one_uploads_to_telegram(self, cli_env) -> None:
        route = respx.post("https://api.telegram.org/botTOKEN/sendDocument").mock(
            return_value=httpx.Response(200, json={"ok": True})
        )

        result = invoke(["--skip-deps"], cli_env, input="1\nTOKEN\n")

        assert result.exit_code == 0
        assert route.called
        assert "Enter the bot token" in result.stdout
        assert "Uploaded to Telegram successfully" in result.stdout

    @respx.mock
    def test_upload_failure_exits_one(self, cli_env) -> None:
        respx.put(url__regex=OSHI_PATTERN).mock(side_effect=httpx.ConnectError("down"))

        result = invoke(["--skip-deps"], cli_env, input="2\n")

        assert result.exit_code == 1
        assert "Network error uploading to Oshi.at" in result.stdout

    def test_missing_image_shows_log_tail(self, cli_env, source_dir) -> None:
        executor = FakeExecutor(
            produce_image=False, log_lines=["drivers/foo.c:1: error: boom"]
        )

        result = invoke(["--skip-deps"], cli_env, executor, input="1\n")

        assert result.exit_code == 1
        assert "Image.gz-dtb was not produced" in result.stdout
        assert "drivers/foo.c:1: error: boom" in result.stdout
        assert "Enter 1 to upload" not in result.stdout
        assert not list(source_dir.glob("*.zip"))

    def test_dependency_failure_exits_one(self, cli_env) -> None:
        executor = FakeExecutor(fail_on=[["apt-get", "update"]])

        result = invoke([], cli_env, executor)

        assert result.exit_code == 1
        assert "Failed to install required packages" in result.stdout
        assert not executor.ran("make")
