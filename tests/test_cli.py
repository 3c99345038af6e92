"""
Tests for the command line interface.
"""

import pytest
from typer.testing import CliRunner

from whenfree import __version__
from whenfree.cli.app import app

runner = CliRunner()

EVENT_YAML = """
name: Team dinner
event:
  event_type: date
  start_time: "18:00"
  end_time: "21:00"
  selected_dates: ["2024-11-25", "2024-11-26", "2024-11-27"]
participants:
  - id: alice
    name: Alice
    unavailable: ["2024-11-25-18:00", "2024-11-25-18:30", "2024-11-27-20:30"]
  - id: bob
    name: Bob
    unavailable: ["2024-11-26-18:00", "2024-11-26-18:30", "2024-11-26-19:00"]
    if_needed: ["2024-11-25-20:00"]
  - id: chloe
    name: Chloe
    if_needed: ["2024-11-27-18:00"]
"""

GYM_ICS = (
    "BEGIN:VCALENDAR\r\nVERSION:2.0\r\nPRODID:-//whenfree//tests//EN\r\n"
    "BEGIN:VEVENT\r\nUID:gym@example.com\r\n"
    "DTSTART;TZID=Asia/Seoul:20241126T190000\r\nDTEND;TZID=Asia/Seoul:20241126T200000\r\n"
    "SUMMARY:Gym\r\nEND:VEVENT\r\nEND:VCALENDAR\r\n"
)


@pytest.fixture
def event_file(tmp_path):
    path = tmp_path / "event.yaml"
    path.write_text(EVENT_YAML, encoding="utf-8")
    return path


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("timezone: Asia/Seoul\n", encoding="utf-8")
    return path


class TestBestCommand:
    """Tests for `whenfree best`."""

    def test_lists_best_ranges(self, event_file, config_file):
        """The best ranges are printed as copyable lines."""
        result = runner.invoke(app, ["best", str(event_file), "--config", str(config_file)])

        assert result.exit_code == 0
        assert "Team dinner" in result.output
        assert "2024-11-25 19:00 ~ 21:00 (3/3)" in result.output
        assert "2024-11-26 19:30 ~ 21:00 (3/3)" in result.output
        assert "2024-11-27 18:00 ~ 20:30 (3/3)" in result.output

    def test_exclude_if_needed(self, event_file, config_file):
        """If-needed answers no longer count toward the best ranges."""
        result = runner.invoke(
            app, ["best", str(event_file), "--config", str(config_file), "--exclude-if-needed"]
        )

        assert result.exit_code == 0
        assert "2024-11-25 19:00 ~ 20:00 (3/3)" in result.output
        assert "2024-11-25 20:30 ~ 21:00 (3/3)" in result.output
        assert "2024-11-27 18:30 ~ 20:30 (3/3)" in result.output

    def test_missing_event_file(self, tmp_path, config_file):
        """A missing event file exits with an error."""
        result = runner.invoke(app, ["best", str(tmp_path / "nope.yaml"), "--config", str(config_file)])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_invalid_event_file(self, tmp_path, config_file):
        """An event with reversed hours is rejected."""
        path = tmp_path / "bad.yaml"
        path.write_text(
            "event:\n  event_type: day\n  start_time: '12:00'\n  end_time: '09:00'\n  selected_days: [Mon]\n",
            encoding="utf-8",
        )

        result = runner.invoke(app, ["best", str(path), "--config", str(config_file)])

        assert result.exit_code == 1
        assert "Invalid event file" in result.output


class TestOtherCommands:
    """Tests for grid, import-ics, sync and version."""

    def test_grid(self, event_file):
        """Every column of the event is shown."""
        result = runner.invoke(app, ["grid", str(event_file)])

        assert result.exit_code == 0
        assert "2024-11-25" in result.output
        assert "20:30" in result.output
        assert "3 respondent(s)" in result.output

    def test_import_ics(self, tmp_path, event_file, config_file):
        """Entries of an .ics file are shown with the slots they block."""
        ics = tmp_path / "gym.ics"
        ics.write_text(GYM_ICS, encoding="utf-8")

        result = runner.invoke(app, ["import-ics", str(event_file), str(ics), "--config", str(config_file)])

        assert result.exit_code == 0
        assert "Gym" in result.output
        assert "2024-11-26-19:00" in result.output

    def test_import_missing_ics(self, tmp_path, event_file, config_file):
        """Missing .ics files are reported before anything is read."""
        result = runner.invoke(
            app, ["import-ics", str(event_file), str(tmp_path / "gone.ics"), "--config", str(config_file)]
        )

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_sync_with_fixture(self, event_file, config_file):
        """Fixture calendars are merged with the saved manual response."""
        result = runner.invoke(app, ["sync", str(event_file), "alice", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "Schedule of alice" in result.output
        assert "Yoga" in result.output
        assert "2024-11-27-18:00" in result.output
        assert "2024-11-27-20:30" in result.output

    def test_version(self):
        """The package version is printed."""
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output
