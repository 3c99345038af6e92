"""
Tests for the slot id space.
"""

from datetime import date

import pytest

from whenfree.domain.exceptions import InvalidSlotIdError
from whenfree.domain.slots import (
    TIME_MARKS,
    format_slot_id,
    parse_clock,
    slot_start_minutes,
    split_slot_id,
    time_marks_between,
    weekday_token,
)


class TestClock:
    """Tests for wall-clock parsing."""

    def test_parse_clock(self):
        """HH:mm strings become minutes since midnight."""
        assert parse_clock("00:00") == 0
        assert parse_clock("09:30") == 570
        assert parse_clock("9:30") == 570

    def test_end_of_day_only_when_allowed(self):
        """24:00 is only valid as the end of a range."""
        assert parse_clock("24:00", allow_end_of_day=True) == 1440
        with pytest.raises(ValueError):
            parse_clock("24:00")

    def test_invalid_clock(self):
        """Garbage and out-of-range values are rejected."""
        for value in ("25:00", "12:60", "noon", ""):
            with pytest.raises(ValueError):
                parse_clock(value)


class TestTimeMarks:
    """Tests for the half-hour grid."""

    def test_full_day_has_48_marks(self):
        """Without bounds every mark of the day is returned."""
        assert len(TIME_MARKS) == 48
        assert time_marks_between(None, None) == list(TIME_MARKS)

    def test_marks_are_half_open(self):
        """The end time itself is not a mark of the window."""
        assert time_marks_between("09:00", "11:00") == ["09:00", "09:30", "10:00", "10:30"]

    def test_window_until_midnight(self):
        """24:00 closes the last column of the day."""
        assert time_marks_between("23:00", "24:00") == ["23:00", "23:30"]


class TestSlotIds:
    """Tests for slot id formatting and parsing."""

    def test_split_date_slot_on_last_hyphen(self):
        """Dates contain hyphens, so the mark follows the last one."""
        assert split_slot_id("2024-11-25-09:30") == ("2024-11-25", "09:30")

    def test_split_weekday_slot(self):
        """Weekday columns split the same way."""
        assert split_slot_id("Mon-09:00") == ("Mon", "09:00")

    def test_format_round_trips(self):
        """A formatted id splits back into its parts."""
        slot_id = format_slot_id("2024-11-26", "17:30")
        assert slot_id == "2024-11-26-17:30"
        assert slot_start_minutes(slot_id) == 17 * 60 + 30

    def test_malformed_ids(self):
        """Off-grid marks, unknown columns and missing parts are rejected."""
        for slot_id in ("Mon-09:15", "Funday-09:00", "09:00", "2024-13-40-09:00", "Mon-"):
            with pytest.raises(InvalidSlotIdError):
                split_slot_id(slot_id)

    def test_invalid_slot_id_is_value_error(self):
        """Callers may catch the generic ValueError."""
        with pytest.raises(ValueError):
            split_slot_id("nope")


def test_weekday_token_starts_on_monday():
    """2024-11-25 was a Monday."""
    assert weekday_token(date(2024, 11, 25)) == "Mon"
    assert weekday_token(date(2024, 12, 1)) == "Sun"
