"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent
SNAPSHOT = PROJECT_ROOT / "tests" / "fixtures" / "sample_graph.json"


def run_cli_command(args: list[str], timeout: int = 60) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        args: Arguments after 'python -m priority_engine.cli.main'
        timeout: Maximum time to wait

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    env = {
        **os.environ,
        "CACHE_DEFERRED_DELAY_SECONDS": "0",
        "CACHE_DEFERRED_PAUSE_SECONDS": "0",
        "INCREMENTAL_LOAD_PAUSE_SECONDS": "0",
        "COLUMNS": "200",
    }
    result = subprocess.run(
        [sys.executable, "-m", "priority_engine.cli.main", *args],
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=timeout,
        env=env,
    )

    return result.returncode, result.stdout, result.stderr


@pytest.fixture
def db(tmp_path):
    return str(tmp_path / "state.db")


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self):
        """Main help should display without errors."""
        code, stdout, stderr = run_cli_command(["--help"])

        assert code == 0, f"Help failed: {stderr}"
        assert "Commands" in stdout
        assert "build-cache" in stdout

    @pytest.mark.parametrize(
        "command",
        ["scope", "build-cache", "set-priority", "pretag", "shield", "history", "distribution", "next", "review"],
    )
    def test_command_help(self, command):
        """Each command's help should work."""
        code, stdout, stderr = run_cli_command([command, "--help"])

        assert code == 0, f"{command} help failed: {stderr}"


class TestCLIScope:
    """Test scope command."""

    def test_scope_runs(self, db):
        code, stdout, stderr = run_cli_command(["scope", str(SNAPSHOT), "ml", "--db", db])

        assert code == 0, f"Scope failed: {stderr}"
        assert "ref-note" in stdout

    def test_document_scope(self, db):
        code, stdout, stderr = run_cli_command(["scope", str(SNAPSHOT), "ml", "--document", "--db", db])

        assert code == 0, f"Document scope failed: {stderr}"
        assert "ref-note" not in stdout

    def test_missing_root(self, db):
        code, stdout, stderr = run_cli_command(["scope", str(SNAPSHOT), "ghost", "--db", db])

        assert code == 0
        assert "empty" in stdout

    def test_missing_snapshot(self, db, tmp_path):
        code, stdout, stderr = run_cli_command(["scope", str(tmp_path / "nope.json"), "ml", "--db", db])

        assert code != 0


class TestCLICache:
    """Test cache commands."""

    def test_build_cache_runs(self, db):
        code, stdout, stderr = run_cli_command(["build-cache", str(SNAPSHOT), "--db", db])

        assert code == 0, f"Build failed: {stderr}"
        assert "Cache settings" in stdout
        assert "paper-note" in stdout

    def test_set_priority_runs(self, db):
        code, stdout, stderr = run_cli_command(["set-priority", str(SNAPSHOT), "optim", "3", "--db", db])

        assert code == 0, f"Set priority failed: {stderr}"
        assert "sgd-card" in stdout

    def test_set_priority_missing_node(self, db):
        code, stdout, stderr = run_cli_command(["set-priority", str(SNAPSHOT), "ghost", "3", "--db", db])

        assert code == 1
        assert "not found" in stdout

    def test_pretag_runs(self, db):
        code, stdout, stderr = run_cli_command(["pretag", str(SNAPSHOT), "--db", db])

        assert code == 0, f"Pretag failed: {stderr}"
        assert "skipped manual" in stdout


class TestCLIShield:
    """Test shield and history commands."""

    def test_shield_save_then_history(self, db):
        code, stdout, stderr = run_cli_command(["shield", str(SNAPSHOT), "--scope", "ml", "--save", "--db", db])

        assert code == 0, f"Shield failed: {stderr}"
        assert "Shields saved" in stdout

        code, stdout, stderr = run_cli_command(["history", "--db", db])

        assert code == 0, f"History failed: {stderr}"
        assert "incremental" in stdout

    def test_empty_history(self, db):
        code, stdout, stderr = run_cli_command(["history", "--db", db])

        assert code == 0
        assert "No shield history" in stdout


class TestCLIScheduling:
    """Test distribution and next commands."""

    def test_distribution_runs(self, db):
        code, stdout, stderr = run_cli_command(["distribution", str(SNAPSHOT), "ml", "--db", db])

        assert code == 0, f"Distribution failed: {stderr}"

    def test_next_runs(self, db):
        code, stdout, stderr = run_cli_command(
            ["next", str(SNAPSHOT), "-n", "6", "-k", "1", "--sub-queue", "ml", "--seed", "1", "--db", db]
        )

        assert code == 0, f"Next failed: {stderr}"
        assert "transformers" in stdout
        assert "Shields" in stdout


class TestCLIReview:
    """Test review command."""

    def test_scoped_review_runs(self, db):
        code, stdout, stderr = run_cli_command(
            ["review", str(SNAPSHOT), "--scope", "ml", "-n", "5", "-k", "1", "--seed", "1", "--db", db]
        )

        assert code == 0, f"Review failed: {stderr}"
        assert "Priority review" in stdout
        assert "transformers" in stdout
        assert "history-notes" not in stdout

    def test_items_only_review(self, db):
        code, stdout, stderr = run_cli_command(["review", str(SNAPSHOT), "-k", "no-cards", "--db", db])

        assert code == 0, f"Review failed: {stderr}"
        assert "history-notes" in stdout
        assert "FC" not in stdout

    def test_bad_card_ratio(self, db):
        code, stdout, stderr = run_cli_command(["review", str(SNAPSHOT), "-k", "lots", "--db", db])

        assert code != 0
