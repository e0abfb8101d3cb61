"""Tests for the command-line interface."""

from pathlib import Path

import pytest
from click.testing import CliRunner

from cruso.cli import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def busy_file(tmp_path: Path) -> Path:
    path = tmp_path / "busy.yaml"
    path.write_text(
        """
busy:
  - start: "2025-01-06T10:00:00Z"
    end: "2025-01-06T11:00:00Z"
    calendar_id: primary
  - start: "2025-01-06T10:30:00Z"
    end: "2025-01-06T12:00:00Z"
    calendar_id: work@example.com
"""
    )
    return path


class TestValidateConfig:
    def test_valid(self, runner: CliRunner, config_file: Path):
        result = runner.invoke(cli, ["validate-config", "--config", str(config_file)])
        assert result.exit_code == 0
        assert "Configuration valid" in result.output

    def test_missing_file(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(cli, ["validate-config", "-c", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1
        assert "Load error" in result.output


class TestClassify:
    @pytest.mark.parametrize(
        ("flags", "action"),
        [
            (["--unknown-user", "--thread-opener", "--invalid-engagement"], "onboard"),
            (["--known-user", "--reply", "--valid-engagement"], "engage"),
            (["--known-user", "--reply", "--invalid-engagement"], "offboard"),
        ],
    )
    def test_actions(self, runner: CliRunner, flags: list[str], action: str):
        result = runner.invoke(cli, ["classify", *flags])
        assert result.exit_code == 0
        assert f"Action: {action}" in result.output

    def test_every_fact_is_required(self, runner: CliRunner):
        result = runner.invoke(cli, ["classify", "--known-user", "--reply"])
        assert result.exit_code != 0


class TestFreeSlots:
    def test_free_slots_from_busy_file(self, runner: CliRunner, busy_file: Path):
        result = runner.invoke(
            cli,
            [
                "free-slots",
                "--start", "2025-01-06T09:00:00Z",
                "--end", "2025-01-06T13:00:00Z",
                "--busy", str(busy_file),
            ],
        )
        assert result.exit_code == 0, result.output
        assert "Free slots" in result.output
        assert "Mon, Jan 6 from 9:00 AM to 10:00 AM" in result.output
        assert "Mon, Jan 6 from 12:00 PM to 1:00 PM" in result.output

    def test_suggestions_in_local_time(self, runner: CliRunner, busy_file: Path):
        result = runner.invoke(
            cli,
            [
                "free-slots",
                "--start", "2025-01-06T09:00:00Z",
                "--end", "2025-01-06T13:00:00Z",
                "--duration", "60",
                "--busy", str(busy_file),
                "--timezone", "America/New_York",
                "--suggest",
            ],
        )
        assert result.exit_code == 0, result.output
        assert "Suggested slots" in result.output
        assert "4:00 AM to 5:00 AM" in result.output
        assert "7:00 AM to 8:00 AM" in result.output

    def test_fully_booked(self, runner: CliRunner, busy_file: Path):
        result = runner.invoke(
            cli,
            [
                "free-slots",
                "--start", "2025-01-06T10:00:00Z",
                "--end", "2025-01-06T12:00:00Z",
                "--busy", str(busy_file),
            ],
        )
        assert result.exit_code == 0
        assert "No available slots found" in result.output

    def test_naive_start_is_rejected(self, runner: CliRunner):
        result = runner.invoke(
            cli, ["free-slots", "--start", "2025-01-06T09:00:00", "--end", "2025-01-06T10:00:00Z"]
        )
        assert result.exit_code == 1
        assert "Invalid input" in result.output

    def test_malformed_busy_file(self, runner: CliRunner, tmp_path: Path):
        path = tmp_path / "busy.yaml"
        path.write_text("busy: 42\n")
        result = runner.invoke(
            cli,
            [
                "free-slots",
                "--start", "2025-01-06T09:00:00Z",
                "--end", "2025-01-06T10:00:00Z",
                "--busy", str(path),
            ],
        )
        assert result.exit_code != 0
        assert "list of busy intervals" in result.output
