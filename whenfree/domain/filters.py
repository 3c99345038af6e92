"""
Declarative post-filters applied to provider events before expansion.
"""

from typing import Iterable, List, Tuple

from pendulum import DateTime

from .slots import MINUTES_PER_DAY, weekday_token


def _pieces(start: int, end: int) -> List[Tuple[int, int]]:
    """Split a minutes-of-day range into non-wrapping pieces of [0, 1440)."""
    if end > start:
        return [(start, end)]
    # end <= start: the range runs past midnight
    pieces = [(start, MINUTES_PER_DAY)]
    if end > 0:
        pieces.append((0, end))
    return pieces


def overlaps_time_of_day(
    event_start: int,
    event_end: int,
    filter_start: int,
    filter_end: int,
) -> bool:
    """
    Check whether an event's time of day overlaps a filter window.

    All values are minutes since midnight. Either range may cross midnight,
    which is expressed by an end that is not after its start (22:00-02:00).

    Example:
    Filter 22:00-02:00 keeps 23:00-23:30 and 01:00-01:30, drops 10:00-10:30.
    """
    for a_start, a_end in _pieces(event_start, event_end):
        for b_start, b_end in _pieces(filter_start, filter_end):
            if a_start < b_end and a_end > b_start:
                return True
    return False


def minutes_of_day(moment: DateTime) -> int:
    return moment.hour * 60 + moment.minute


def matches_weekdays(start: DateTime, selected_days: Iterable[str], recurring: bool) -> bool:
    """Day-based events only take recurring entries that fall on a selected weekday."""
    return recurring and weekday_token(start) in set(selected_days)
