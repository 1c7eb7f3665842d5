"""Tests for the CLI.

Commands run against temporary directories configured through
COMMITCI_* environment variables.
"""

import json
import sys
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from commitci import __version__
from commitci.builds.store import FileResultStore
from commitci.cli import app
from commitci.types import BuildStatus

runner = CliRunner()


@pytest.fixture
def cli_env(settings, monkeypatch):
    """Point the CLI at the temporary settings."""
    monkeypatch.setenv("COMMITCI_WORK_DIR", str(settings.work_dir))
    monkeypatch.setenv("COMMITCI_RESULTS_DIR", str(settings.results_dir))
    monkeypatch.setenv("COMMITCI_TEST_COMMAND", json.dumps(settings.test_command))
    monkeypatch.setenv(
        "COMMITCI_PACKAGE_COMMAND", json.dumps(settings.package_command)
    )
    # Keep log records out of the captured output
    monkeypatch.setenv("COMMITCI_LOG_LEVEL", "CRITICAL")
    return settings


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "build" in result.stdout
        assert "show" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        """CLI -V should print version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self) -> None:
        """CLI with no args should show help."""
        result = runner.invoke(app, [])
        assert "Usage:" in result.stdout


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_command(self, cli_env) -> None:
        """CLI config should show configuration sections."""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Paths:" in result.stdout
        assert "Pipeline:" in result.stdout
        assert "Concurrency:" in result.stdout
        assert "Timeouts (seconds):" in result.stdout

    def test_config_json(self, cli_env) -> None:
        """CLI config --json should output the effective settings."""
        result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0

        data = json.loads(result.stdout)
        assert data["results_dir"] == str(cli_env.results_dir)
        assert data["test_command"] == cli_env.test_command


class TestCLIShow:
    """Test CLI show command."""

    def test_show_not_found(self, cli_env) -> None:
        """Should exit 1 for an unknown commit."""
        result = runner.invoke(app, ["show", "abc123"])
        assert result.exit_code == 1
        assert "Build not found: abc123" in result.stdout

    def test_show_not_found_json(self, cli_env) -> None:
        """Should report a machine-readable error code."""
        result = runner.invoke(app, ["show", "abc123", "--json"])
        assert result.exit_code == 1
        assert json.loads(result.stdout) == {
            "code": "build_not_found",
            "commit": "abc123",
        }

    def test_show_result(self, cli_env, make_result) -> None:
        """Should print the stored result with its log."""
        FileResultStore(cli_env.results_dir).save(
            make_result(status=BuildStatus.FAILURE)
        )

        result = runner.invoke(app, ["show", "abc123"])

        assert result.exit_code == 0
        assert "acme/widget" in result.stdout
        assert "FAILURE" in result.stdout
        assert "line one" in result.stdout
        assert "line two" in result.stdout

    def test_show_json(self, cli_env, make_result) -> None:
        """Should output the build info as JSON."""
        FileResultStore(cli_env.results_dir).save(make_result())

        result = runner.invoke(app, ["show", "abc123", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["hash"] == "abc123"
        assert data["status"] == "SUCCESS"
        assert data["status_style"] == "status-success"
        assert data["logs"] == ["line one", "line two"]

    def test_show_no_logs(self, cli_env, make_result) -> None:
        """--no-logs should omit the log lines."""
        FileResultStore(cli_env.results_dir).save(make_result())

        result = runner.invoke(app, ["show", "abc123", "--json", "--no-logs"])

        assert result.exit_code == 0
        assert "logs" not in json.loads(result.stdout)

    def test_log_lines_are_not_markup(self, cli_env, make_result) -> None:
        """Log lines should be printed verbatim."""
        FileResultStore(cli_env.results_dir).save(
            make_result(logs=("[ERROR] [red]compile failed[/red]",))
        )

        result = runner.invoke(app, ["show", "abc123"])

        assert "[ERROR] [red]compile failed[/red]" in result.stdout


class TestCLIBuild:
    """Test CLI build command."""

    def test_build_success_exit_code(self, cli_env, make_result) -> None:
        """Should exit 0 when the build succeeds."""
        with patch(
            "commitci.builds.service.build_project", return_value=make_result()
        ) as mock_build:
            result = runner.invoke(app, ["build", "acme", "widget", "abc123", "main"])

        assert result.exit_code == 0
        assert "SUCCESS" in result.stdout
        revision = mock_build.call_args.args[0]
        assert revision.slug == "acme/widget"
        assert revision.commit == "abc123"
        assert revision.branch == "main"

    @pytest.mark.parametrize("status", [BuildStatus.FAILURE, BuildStatus.ERROR])
    def test_build_unsuccessful_exit_code(self, cli_env, make_result, status) -> None:
        """Should exit 1 when the build does not succeed."""
        with patch(
            "commitci.builds.service.build_project",
            return_value=make_result(status=status),
        ):
            result = runner.invoke(app, ["build", "acme", "widget", "abc123", "main"])

        assert result.exit_code == 1
        assert status.name in result.stdout

    def test_build_json(self, cli_env, make_result) -> None:
        """Should output the build info as JSON."""
        with patch(
            "commitci.builds.service.build_project", return_value=make_result()
        ):
            result = runner.invoke(
                app, ["build", "acme", "widget", "abc123", "main", "--json"]
            )

        assert result.exit_code == 0
        assert json.loads(result.stdout)["status"] == "SUCCESS"

    def test_build_then_show(self, cli_env, git_remote, monkeypatch) -> None:
        """Should record a real build that show can find afterwards."""
        base_url, first, _ = git_remote
        monkeypatch.setenv("COMMITCI_CLONE_BASE_URL", base_url)
        monkeypatch.setenv(
            "COMMITCI_TEST_COMMAND",
            json.dumps([sys.executable, "-c", "print(open('README.md').read())"]),
        )

        built = runner.invoke(app, ["build", "acme", "widget", first, "main", "--json"])
        shown = runner.invoke(app, ["show", first, "--json"])

        assert built.exit_code == 0
        assert json.loads(built.stdout)["status"] == "SUCCESS"
        assert shown.exit_code == 0
        assert json.loads(shown.stdout)["logs"] == ["v1", "", "packaged"]

    def test_build_unknown_commit(self, cli_env, git_remote, monkeypatch) -> None:
        """Should record ERROR for a commit the remote does not have."""
        base_url, _, _ = git_remote
        monkeypatch.setenv("COMMITCI_CLONE_BASE_URL", base_url)

        result = runner.invoke(
            app, ["build", "acme", "widget", "abc123", "main", "--json"]
        )

        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["status"] == "ERROR"
        assert data["logs"] == ["Failed to fetch project files"]
