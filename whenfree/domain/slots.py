"""
The canonical slot space.

A slot is one 30-minute cell of one column. Its identifier is the string
``"<column>-<HH:mm>"`` where the column is either an ISO date
(``2024-11-25``) or a weekday token (``Mon``). Dates contain hyphens too, so
the time mark is always recovered from the *last* hyphen.
"""

import re
from datetime import date
from typing import List, Tuple

from .exceptions import InvalidSlotIdError

SLOT_MINUTES = 30
MINUTES_PER_DAY = 24 * 60

TIME_MARKS: Tuple[str, ...] = tuple(
    f"{minutes // 60:02d}:{minutes % 60:02d}"
    for minutes in range(0, MINUTES_PER_DAY, SLOT_MINUTES)
)

# Monday first, matching date.weekday()
WEEKDAYS: Tuple[str, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_clock(value: str, allow_end_of_day: bool = False) -> int:
    """
    Parse an ``HH:mm`` wall-clock string into minutes since midnight.

    Args:
        value: Clock string such as ``"09:30"``
        allow_end_of_day: Accept ``"24:00"`` (only meaningful as a range end)

    Returns:
        Minutes since midnight

    Raises:
        ValueError: If the string is not a valid clock time
    """
    match = _CLOCK_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Invalid time {value!r}, expected HH:mm")

    hours, minutes = int(match.group(1)), int(match.group(2))
    total = hours * 60 + minutes

    if allow_end_of_day and total == MINUTES_PER_DAY:
        return total
    if hours > 23 or minutes > 59:
        raise ValueError(f"Invalid time {value!r}, expected HH:mm")
    return total


def mark_to_minutes(mark: str) -> int:
    """Minutes since midnight of a grid mark. Rejects off-grid values."""
    minutes = parse_clock(mark)
    if minutes % SLOT_MINUTES:
        raise ValueError(f"Time {mark!r} is not on the {SLOT_MINUTES}-minute grid")
    return minutes


def minutes_to_mark(minutes: int) -> str:
    """Format minutes since midnight as ``HH:mm`` (``24:00`` for end of day)."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def time_marks_between(start_time: str | None, end_time: str | None) -> List[str]:
    """
    Grid marks in the half-open window ``[start_time, end_time)``.

    Without bounds the whole day (48 marks) is returned.
    """
    if not start_time or not end_time:
        return list(TIME_MARKS)

    start = parse_clock(start_time)
    end = parse_clock(end_time, allow_end_of_day=True)
    return [mark for mark in TIME_MARKS if start <= mark_to_minutes(mark) < end]


def format_slot_id(column: str, mark: str) -> str:
    """Build a slot id from a column and a time mark."""
    return f"{column}-{mark}"


def split_slot_id(slot_id: str) -> Tuple[str, str]:
    """
    Split a slot id into ``(column, mark)``.

    Raises:
        InvalidSlotIdError: If the id has no column or an off-grid time mark
    """
    column, sep, mark = slot_id.rpartition("-")
    if not sep or not column or mark not in TIME_MARKS:
        raise InvalidSlotIdError(f"Malformed slot id: {slot_id!r}")
    if not (is_weekday_token(column) or is_date_column(column)):
        raise InvalidSlotIdError(f"Unknown column in slot id: {slot_id!r}")
    return column, mark


def slot_start_minutes(slot_id: str) -> int:
    """Minutes since midnight at which the slot starts."""
    return mark_to_minutes(split_slot_id(slot_id)[1])


def weekday_token(day: date) -> str:
    """Weekday token (``Mon``..``Sun``) of a date or datetime."""
    return WEEKDAYS[day.weekday()]


def is_weekday_token(column: str) -> bool:
    return column in WEEKDAYS


def is_date_column(column: str) -> bool:
    if not _DATE_RE.match(column):
        return False
    try:
        date.fromisoformat(column)
    except ValueError:
        return False
    return True
