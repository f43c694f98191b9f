"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import shlex
import subprocess
import sys
from pathlib import Path

import pytest

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent


def run_cli_command(command: str, timeout: int = 60) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        command: The command to run (after 'python -m uams')
        timeout: Maximum time to wait

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    full_command = f"{shlex.quote(sys.executable)} -m uams {command}"

    result = subprocess.run(
        full_command,
        shell=True,
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=timeout,
    )

    return result.returncode, result.stdout, result.stderr


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self):
        """Main help should display without errors."""
        code, stdout, stderr = run_cli_command("--help")

        assert code == 0, f"Help failed: {stderr}"
        assert "simulate" in stdout
        assert "interval" in stdout

    def test_simulate_help(self):
        code, stdout, stderr = run_cli_command("simulate --help")

        assert code == 0, f"Simulate help failed: {stderr}"


class TestCLIInterval:
    """Test interval command."""

    def test_interval_runs(self):
        """Neutral memory state with stability 10 gives 23 days."""
        code, stdout, stderr = run_cli_command("interval --stability 10")

        assert code == 0, f"Interval failed: {stderr}"
        assert "Optimal interval: 23 days" in stdout

    def test_interval_requires_stability(self):
        code, stdout, stderr = run_cli_command("interval")

        assert code != 0


class TestCLISimulate:
    """Test simulate command."""

    def test_simulate_runs(self):
        code, stdout, stderr = run_cli_command("simulate --turns 5 --seed 1")

        assert code == 0, f"Simulate failed: {stderr}"
        assert "Session Summary" in stdout

    def test_simulate_save_then_list(self, tmp_path):
        session_dir = shlex.quote(str(tmp_path))

        code, stdout, stderr = run_cli_command(f"simulate --turns 3 --seed 7 --save --session-dir {session_dir}")
        assert code == 0, f"Simulate failed: {stderr}"
        assert (tmp_path / "sim-7.json").exists()

        code, stdout, stderr = run_cli_command(f"sessions --session-dir {session_dir}")
        assert code == 0, f"Sessions failed: {stderr}"
        assert "sim-7" in stdout


class TestCLISessions:
    """Test sessions command."""

    def test_empty_session_dir(self, tmp_path):
        code, stdout, stderr = run_cli_command(f"sessions --session-dir {shlex.quote(str(tmp_path))}")

        assert code == 0, f"Sessions failed: {stderr}"
        assert "No saved sessions" in stdout
