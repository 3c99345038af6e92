"""
Normalization of raw calendar provider data into blocked slots.

Two providers are understood:

- ``google``: REST events that the provider has already expanded
  (``singleEvents``). Each carries ``start``/``end`` and, for members of a
  series, a ``recurringEventId``.
- ``apple``: iCalendar payloads from a CalDAV server holding VEVENT and VTODO
  components, with RRULE series expanded here.

Third-party feeds are not schema-guaranteed, so one broken item is logged and
skipped rather than failing the whole pass.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, Iterator, List, Mapping, Tuple

import pendulum
from icalendar import Calendar
from icalendar.cal import Component
from pendulum import DateTime

from .exceptions import MalformedEvent
from .filters import matches_weekdays, minutes_of_day, overlaps_time_of_day
from .models import EventConfig, NormalizedEvent, SourceTag
from .recurrence import DEFAULT_MAX_OCCURRENCES, RecurrenceExpander, RecurrenceSeed

logger = logging.getLogger(__name__)

DEFAULT_EVENT_TITLE = "Untitled Event"
DEFAULT_REMINDER_TITLE = "Untitled Reminder"
TODO_TITLE_PREFIX = "📌 "
TODO_BLOCK_MINUTES = 60


@dataclass(frozen=True)
class _Entry:
    event_id: str
    title: str
    seed: RecurrenceSeed
    all_day: bool = False
    is_todo: bool = False


class CalendarNormalizer:
    """
    Converts provider payloads into ``NormalizedEvent`` values for one event.

    Output is idempotent: the same input always yields the same slot ids.
    """

    def __init__(self, timezone: str, max_occurrences: int = DEFAULT_MAX_OCCURRENCES):
        self.timezone = timezone
        self.max_occurrences = max_occurrences

    def normalize(
        self,
        provider: str,
        raw_events: Iterable[Any],
        config: EventConfig,
        window: Tuple[DateTime, DateTime] | None = None,
    ) -> List[NormalizedEvent]:
        """
        Normalize one provider's raw data against an event.

        Args:
            provider: ``"google"`` or ``"apple"``
            raw_events: REST event mappings (google) or iCalendar payloads (apple)
            config: Event whose universe bounds the result
            window: Occurrence window; defaults to the event's own window

        Returns:
            One NormalizedEvent per occurrence that blocks at least one slot
        """
        source = SourceTag(provider)
        window_start, window_end = window or config.window(self.timezone)
        expander = RecurrenceExpander(config, self.timezone, self.max_occurrences)

        if source is SourceTag.GOOGLE:
            entries = self._rest_entries(raw_events, config)
        elif source is SourceTag.APPLE:
            entries = self._ical_entries(raw_events)
        else:
            raise ValueError(f"{source.value!r} is not a calendar provider")

        normalized: List[NormalizedEvent] = []
        for entry in entries:
            try:
                normalized.extend(
                    self._expand_entry(entry, source, expander, window_start, window_end)
                )
            except (ValueError, TypeError, OverflowError) as exc:
                logger.warning(
                    "Skipping malformed event: %s",
                    MalformedEvent(source.value, entry.event_id, str(exc)),
                )

        logger.debug("Normalized %d %s block(s)", len(normalized), source.value)
        return normalized

    def _expand_entry(
        self,
        entry: _Entry,
        source: SourceTag,
        expander: RecurrenceExpander,
        window_start: DateTime,
        window_end: DateTime,
    ) -> List[NormalizedEvent]:
        events: List[NormalizedEvent] = []

        for occurrence in expander.occurrences(entry.seed, window_start, window_end):
            slot_ids = expander.slots_for(occurrence)
            if not slot_ids:
                continue

            event_id = entry.event_id
            if entry.seed.rrule:
                # Keep every occurrence of a series individually addressable
                event_id = f"{entry.event_id}_{occurrence.start.in_timezone('UTC').to_iso8601_string()}"

            events.append(
                NormalizedEvent(
                    event_id=event_id,
                    slot_ids=tuple(slot_ids),
                    title=entry.title,
                    source=source,
                    is_recurring=occurrence.is_recurring,
                    is_todo=entry.is_todo,
                )
            )

        return events

    # ------------------------------------------------------------------
    # google (REST)
    # ------------------------------------------------------------------

    def _rest_entries(self, raw_events: Iterable[Any], config: EventConfig) -> Iterator[_Entry]:
        for raw in raw_events:
            try:
                entry = self._parse_rest_event(raw)
            except MalformedEvent as exc:
                logger.warning("Skipping malformed event: %s", exc)
                continue

            if entry is None or not self._passes_rest_filters(entry, config):
                continue
            yield entry

    def _parse_rest_event(self, raw: Any) -> _Entry | None:
        if not isinstance(raw, Mapping):
            raise MalformedEvent(SourceTag.GOOGLE.value, "?", "event is not a mapping")

        event_id = str(raw.get("id") or "")
        if str(raw.get("status") or "").lower() == "cancelled":
            return None

        start, all_day = self._parse_rest_time(event_id, raw.get("start"))
        end, _ = self._parse_rest_time(event_id, raw.get("end"))
        if end < start:
            raise MalformedEvent(SourceTag.GOOGLE.value, event_id, "event ends before it starts")

        recurring = bool(raw.get("recurringEventId") or raw.get("isRecurring"))
        title = raw.get("summary") or raw.get("title") or DEFAULT_EVENT_TITLE

        return _Entry(
            event_id=event_id,
            title=str(title),
            seed=RecurrenceSeed(start=start, end=end, recurring=recurring),
            all_day=all_day,
        )

    def _parse_rest_time(self, event_id: str, value: Any) -> Tuple[DateTime, bool]:
        """
        Parse ``"2024-11-25T11:00:00+09:00"``, ``"2024-11-25"`` or the
        ``{"dateTime": ...}`` / ``{"date": ...}`` wire shape.
        """
        if isinstance(value, Mapping):
            text = value.get("dateTime") or value.get("date")
        elif isinstance(value, datetime):
            if value.tzinfo is None:
                return pendulum.instance(value, tz=self.timezone), False
            return pendulum.instance(value), False
        else:
            text = value

        if not isinstance(text, str) or not text:
            raise MalformedEvent(SourceTag.GOOGLE.value, event_id, f"missing time: {value!r}")

        try:
            parsed = pendulum.parse(text, tz=self.timezone)
        except ValueError as exc:
            raise MalformedEvent(SourceTag.GOOGLE.value, event_id, str(exc)) from exc

        if not isinstance(parsed, DateTime):
            raise MalformedEvent(SourceTag.GOOGLE.value, event_id, f"not a datetime: {text!r}")

        return parsed, "T" not in text

    def _passes_rest_filters(self, entry: _Entry, config: EventConfig) -> bool:
        seed = entry.seed
        local_start = seed.start.in_timezone(self.timezone)
        local_end = seed.end.in_timezone(self.timezone)

        if config.is_day_based and not matches_weekdays(
            local_start, config.selected_days, seed.is_recurring
        ):
            logger.debug("Excluded %s: not a recurring event on a selected day", entry.event_id)
            return False

        if entry.all_day:
            return True

        return overlaps_time_of_day(
            minutes_of_day(local_start),
            minutes_of_day(local_end),
            config.start_minutes,
            config.end_minutes,
        )

    # ------------------------------------------------------------------
    # apple (iCalendar / CalDAV)
    # ------------------------------------------------------------------

    def _ical_entries(self, payloads: Iterable[Any]) -> Iterator[_Entry]:
        for index, payload in enumerate(payloads):
            try:
                calendar = payload if isinstance(payload, Component) else Calendar.from_ical(payload)
            except (ValueError, TypeError) as exc:
                logger.warning(
                    "Skipping malformed event: %s",
                    MalformedEvent(SourceTag.APPLE.value, f"payload-{index}", str(exc)),
                )
                continue

            for component in calendar.walk():
                try:
                    if component.name == "VEVENT":
                        entry = self._parse_vevent(component)
                    elif component.name == "VTODO":
                        entry = self._parse_vtodo(component)
                    else:
                        continue
                except MalformedEvent as exc:
                    logger.warning("Skipping malformed event: %s", exc)
                    continue
                except (ValueError, TypeError, AttributeError) as exc:
                    uid = str(component.get("UID") or f"payload-{index}")
                    logger.warning(
                        "Skipping malformed event: %s",
                        MalformedEvent(SourceTag.APPLE.value, uid, str(exc)),
                    )
                    continue

                if entry is not None:
                    yield entry

    def _parse_vevent(self, component: Component) -> _Entry:
        uid = str(component.get("UID") or "")
        dtstart = component.get("DTSTART")
        if dtstart is None:
            raise MalformedEvent(SourceTag.APPLE.value, uid, "VEVENT without DTSTART")

        start, all_day = self._ical_moment(uid, dtstart.dt)

        if component.get("DTEND") is not None:
            end, _ = self._ical_moment(uid, component.get("DTEND").dt)
        elif component.get("DURATION") is not None:
            end = start + component.get("DURATION").dt
        else:
            end = start.add(days=1) if all_day else start

        rrule = component.get("RRULE")
        rrule_text = rrule.to_ical().decode("utf-8") if rrule is not None else None

        return _Entry(
            event_id=uid,
            title=str(component.get("SUMMARY") or DEFAULT_EVENT_TITLE),
            seed=RecurrenceSeed(
                start=start,
                end=end,
                rrule=rrule_text,
                exdates=self._exdates(uid, component.get("EXDATE")),
            ),
            all_day=all_day,
        )

    def _parse_vtodo(self, component: Component) -> _Entry | None:
        uid = str(component.get("UID") or "")
        status = str(component.get("STATUS") or "").upper()
        if status == "COMPLETED" or component.get("COMPLETED") is not None:
            return None

        due = component.get("DUE")
        if due is None:
            return None

        start, all_day = self._ical_moment(uid, due.dt)
        summary = str(component.get("SUMMARY") or DEFAULT_REMINDER_TITLE)

        return _Entry(
            event_id=uid,
            title=f"{TODO_TITLE_PREFIX}{summary}",
            seed=RecurrenceSeed(start=start, end=start.add(minutes=TODO_BLOCK_MINUTES)),
            all_day=all_day,
            is_todo=True,
        )

    def _ical_moment(self, uid: str, value: Any) -> Tuple[DateTime, bool]:
        """Floating times are local wall clock; dates are all-day starts."""
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return pendulum.instance(value, tz=self.timezone), False
            return pendulum.instance(value), False
        if isinstance(value, date):
            return pendulum.datetime(value.year, value.month, value.day, tz=self.timezone), True
        raise MalformedEvent(SourceTag.APPLE.value, uid, f"unsupported time value {value!r}")

    def _exdates(self, uid: str, prop: Any) -> Tuple[DateTime, ...]:
        if prop is None:
            return ()

        props = prop if isinstance(prop, list) else [prop]
        moments: List[DateTime] = []
        for item in props:
            for value in item.dts:
                moment, _ = self._ical_moment(uid, value.dt)
                moments.append(moment)
        return tuple(moments)
