"""Unit tests for the CLI — Typer command registration and basic behavior."""

from __future__ import annotations

import io

import pytest
import typer
from rich.console import Console
from typer.testing import CliRunner

from shiprail.cli.app import app
from shiprail.cli.commands._factory import build_orchestrator

runner = CliRunner()


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    """The CLI must register all expected commands and show help."""

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        # Typer's no_args_is_help may exit with 0 or 2 depending on version
        assert result.exit_code in (0, 2)
        assert "usage" in result.output.lower()

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "propagate", "history", "verify", "demo"):
            assert command in result.output

    def test_subcommand_help(self):
        for command in ("run", "propagate", "history", "verify", "demo"):
            result = runner.invoke(app, [command, "--help"])
            assert result.exit_code == 0, command


# ---------------------------------------------------------------------------
# Test: commands against a temporary ledger
# ---------------------------------------------------------------------------


class TestDemoAndHistory:
    def test_demo_runs_three_commits(self, tmp_path):
        ledger = tmp_path / "demo.db"
        result = runner.invoke(app, ["demo", "--ledger", str(ledger)])
        assert result.exit_code == 0, result.output
        assert "succeeded" in result.output
        assert "gated" in result.output
        assert "build_failed" in result.output
        assert "devops-radar:abc1234" in result.output

    def test_history_after_demo(self, tmp_path):
        ledger = tmp_path / "demo.db"
        runner.invoke(app, ["demo", "--ledger", str(ledger)])
        result = runner.invoke(app, ["history", "--ledger", str(ledger), "--limit", "2"])
        assert result.exit_code == 0
        assert "Run History" in result.output

    def test_history_missing_ledger(self, tmp_path):
        result = runner.invoke(app, ["history", "--ledger", str(tmp_path / "none.db")])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_verify_demo_run(self, tmp_path):
        from shiprail.core.run_ledger import RunLedger

        ledger = tmp_path / "demo.db"
        runner.invoke(app, ["demo", "--ledger", str(ledger)])
        run_id = RunLedger(ledger).get_outcomes(limit=1)[0].run_id
        result = runner.invoke(app, ["verify", run_id, "--ledger", str(ledger)])
        assert result.exit_code == 0
        assert "valid" in result.output.lower()

    def test_verify_unknown_run(self, tmp_path):
        ledger = tmp_path / "demo.db"
        runner.invoke(app, ["demo", "--ledger", str(ledger)])
        result = runner.invoke(app, ["verify", "run-nope", "--ledger", str(ledger)])
        assert result.exit_code == 1


class TestRunCommand:
    def test_run_without_gitops_target_exits_2(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SHIPRAIL_GITOPS_REPOSITORY", raising=False)
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(app, ["run", "abc1234", "--ledger", str(tmp_path / "l.db")])
        assert result.exit_code == 2
        assert "GitOps" in result.output

    def test_run_untracked_branch_exits_0(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SHIPRAIL_GITOPS_REPOSITORY", "acme/deployments")
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(
            app, ["run", "abc1234", "--branch", "feature/x", "--ledger", str(tmp_path / "l.db")]
        )
        assert result.exit_code == 0
        assert "not tracked" in result.output

    def test_run_invalid_commit_exits_2(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SHIPRAIL_GITOPS_REPOSITORY", "acme/deployments")
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(app, ["run", "bad commit", "--ledger", str(tmp_path / "l.db")])
        assert result.exit_code == 2

    def test_propagate_refused_without_record(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SHIPRAIL_GITOPS_REPOSITORY", "acme/deployments")
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(
            app, ["propagate", "abc1234", "--commit", "abc1234", "--ledger", str(tmp_path / "l.db")]
        )
        assert result.exit_code == 2
        assert "Refused" in result.output


class TestMalformedSettings:
    @pytest.mark.parametrize("command", [["run", "abc1234"], ["history"], ["demo"]])
    def test_malformed_env_value_exits_2(self, tmp_path, monkeypatch, command):
        monkeypatch.setenv("SHIPRAIL_SHORT_TAG_LENGTH", "abc")
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(app, [*command, "--ledger", str(tmp_path / "l.db")])
        assert result.exit_code == 2
        assert "short_tag_length" in result.output
        assert "Traceback" not in result.output

    def test_factory_reports_malformed_setting(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SHIPRAIL_PATCH_MAX_RETRIES", "lots")
        monkeypatch.chdir(tmp_path)
        out = io.StringIO()
        with pytest.raises(typer.Exit) as excinfo:
            build_orchestrator(Console(file=out, width=200))
        assert excinfo.value.exit_code == 2
        assert "patch_max_retries" in out.getvalue()
