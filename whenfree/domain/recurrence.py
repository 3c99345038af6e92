"""
Expansion of calendar entries into slot ids.

Provider adapters only describe *when* something happens (a
``RecurrenceSeed``); rounding to the half-hour grid and clipping to the event
window happen here and nowhere else.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, List, Tuple

import pendulum
from dateutil.rrule import rrulestr
from pendulum import DateTime

from .models import EventConfig, RecurrenceOccurrence
from .slots import SLOT_MINUTES, format_slot_id, weekday_token

logger = logging.getLogger(__name__)

DEFAULT_MAX_OCCURRENCES = 1000


@dataclass(frozen=True)
class RecurrenceSeed:
    """
    A calendar entry before expansion.

    ``rrule`` carries an RFC 5545 rule to iterate. ``recurring`` marks entries
    that belong to a series even though the provider already expanded them.
    """
    start: DateTime
    end: DateTime
    rrule: str | None = None
    recurring: bool = False
    exdates: Tuple[DateTime, ...] = ()

    @property
    def is_recurring(self) -> bool:
        return self.recurring or bool(self.rrule)


def round_down(moment: DateTime) -> DateTime:
    """Round down to the half-hour: 11:05 -> 11:00, 11:35 -> 11:30."""
    minute = 0 if moment.minute < 30 else 30
    return moment.set(minute=minute, second=0, microsecond=0)


def round_up(moment: DateTime) -> DateTime:
    """Round up to the half-hour: 11:05 -> 11:30, 11:35 -> 12:00. Marks stay put."""
    truncated = moment.set(second=0, microsecond=0)
    if truncated != moment:
        truncated = truncated.add(minutes=1)

    if truncated.minute in (0, 30):
        return truncated
    if truncated.minute < 30:
        return truncated.set(minute=30)
    return truncated.set(minute=0).add(hours=1)


class RecurrenceExpander:
    """
    Turns seeds into the slot ids of one event.

    Rules:
    1. Start rounds down and end rounds up to the half-hour grid
    2. A slot is kept when its own start lies in the event hours
    3. Columns are the occurrence date, or its weekday for day-based events
    4. Day-based events ignore entries that are not part of a series
    """

    def __init__(
        self,
        config: EventConfig,
        timezone: str,
        max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
    ):
        self.config = config
        self.timezone = timezone
        self.max_occurrences = max_occurrences
        self._columns = frozenset(config.columns())

    def expand(
        self,
        seed: RecurrenceSeed,
        window_start: DateTime,
        window_end: DateTime,
    ) -> List[str]:
        """
        Slot ids covered by every occurrence of ``seed`` inside the window.

        Args:
            seed: Entry to expand
            window_start: Earliest occurrence start to keep (inclusive)
            window_end: Latest occurrence start to keep (inclusive)

        Returns:
            Slot ids in occurrence order, without duplicates
        """
        seen: dict = {}
        for occurrence in self.occurrences(seed, window_start, window_end):
            for slot_id in self.slots_for(occurrence):
                seen.setdefault(slot_id, None)
        return list(seen)

    def occurrences(
        self,
        seed: RecurrenceSeed,
        window_start: DateTime,
        window_end: DateTime,
    ) -> Iterator[RecurrenceOccurrence]:
        """Concrete occurrences of ``seed`` that touch the window."""
        if not seed.rrule:
            if seed.start <= window_end and seed.end >= window_start:
                yield RecurrenceOccurrence(
                    start=seed.start,
                    end=seed.end,
                    is_recurring=seed.is_recurring,
                )
            return

        duration = seed.end - seed.start
        excluded = {int(moment.timestamp()) for moment in seed.exdates}
        kept = 0

        for raw_start in self._iterate_rule(seed, window_start):
            start = pendulum.instance(raw_start)
            if start > window_end:
                break
            if start < window_start or int(start.timestamp()) in excluded:
                continue

            kept += 1
            if kept > self.max_occurrences:
                logger.warning(
                    "Stopped expanding %r after %d occurrences in the window",
                    seed.rrule,
                    self.max_occurrences,
                )
                break

            yield RecurrenceOccurrence(start=start, end=start + duration, is_recurring=True)

    def slots_for(self, occurrence: RecurrenceOccurrence) -> List[str]:
        """Slot ids of a single occurrence after rounding and windowing."""
        if self.config.is_day_based and not occurrence.is_recurring:
            return []

        current = round_down(occurrence.start.in_timezone(self.timezone))
        end = round_up(occurrence.end.in_timezone(self.timezone))

        slot_ids: List[str] = []
        while current < end:
            column = self._column_for(current)
            if column is not None and self.config.accepts_minutes(current.hour * 60 + current.minute):
                slot_ids.append(format_slot_id(column, current.format("HH:mm")))
            current = current.add(minutes=SLOT_MINUTES)

        return slot_ids

    def _column_for(self, moment: DateTime) -> str | None:
        if self.config.is_day_based:
            column = weekday_token(moment)
        else:
            column = moment.to_date_string()
        return column if column in self._columns else None

    def _iterate_rule(self, seed: RecurrenceSeed, after: DateTime) -> Iterator:
        # Iterate in the entry's own zone so BYDAY keeps its meaning.
        # Occurrences before ``after`` are skipped without being yielded.
        dtstart = seed.start
        after = after.in_timezone(dtstart.tz)
        try:
            rule = rrulestr(seed.rrule, dtstart=dtstart)
        except ValueError:
            # UNTIL given as a floating value while DTSTART carries a zone
            logger.debug("Retrying %r with a floating start", seed.rrule)
            rule = rrulestr(seed.rrule, dtstart=dtstart.naive())
            return (
                pendulum.instance(moment, tz=dtstart.tz)
                for moment in rule.xafter(after.naive(), inc=True)
            )
        return rule.xafter(after, inc=True)
