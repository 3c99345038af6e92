"""
Domain models for events, participant schedules and aggregated availability.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Tuple

import pendulum
from pendulum import DateTime

from .exceptions import InvalidEventConfig
from .slots import (
    SLOT_MINUTES,
    WEEKDAYS,
    format_slot_id,
    is_date_column,
    parse_clock,
    time_marks_between,
)

# Day-based events have no dates of their own; calendars are read this far ahead.
DAY_EVENT_LOOKAHEAD_WEEKS = 4


class EventType(str, Enum):
    DATE = "date"
    DAY = "day"


class SourceTag(str, Enum):
    """Producer of an unavailable or if-needed slot."""

    MANUAL = "manual"
    FIXED = "fixed"
    GOOGLE = "google"
    APPLE = "apple"

    @property
    def precedence(self) -> int:
        """Higher wins when two producers claim the same slot."""
        return _PRECEDENCE[self]

    @property
    def is_calendar(self) -> bool:
        return self in (SourceTag.GOOGLE, SourceTag.APPLE)


_PRECEDENCE = {
    SourceTag.GOOGLE: 0,
    SourceTag.APPLE: 0,
    SourceTag.FIXED: 1,
    SourceTag.MANUAL: 2,
}


class SlotState(str, Enum):
    UNAVAILABLE = "unavailable"
    IF_NEEDED = "if_needed"
    AVAILABLE = "available"


class SelectionMode(str, Enum):
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class EventConfig:
    """
    Shape of an event: which columns exist and which half-hours of each.

    Invariant: the universe never contains a slot whose time of day lies
    outside ``[start_time, end_time)``.
    """
    event_type: EventType
    start_time: str
    end_time: str
    start_date: date | None = None
    end_date: date | None = None
    selected_dates: Tuple[str, ...] = ()
    selected_days: Tuple[str, ...] = ()
    _universe: FrozenSet[str] = field(default=frozenset(), init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "event_type", EventType(self.event_type))
        object.__setattr__(self, "selected_dates", tuple(self.selected_dates or ()))
        object.__setattr__(self, "selected_days", tuple(self.selected_days or ()))

        try:
            start = parse_clock(self.start_time)
            end = parse_clock(self.end_time, allow_end_of_day=True)
        except ValueError as exc:
            raise InvalidEventConfig(str(exc)) from exc
        if start % SLOT_MINUTES or end % SLOT_MINUTES:
            raise InvalidEventConfig(
                f"Event hours must be on the {SLOT_MINUTES}-minute grid, "
                f"got {self.start_time}-{self.end_time}"
            )
        if start >= end:
            raise InvalidEventConfig(
                f"Start time {self.start_time} must be before end time {self.end_time}"
            )

        if self.event_type is EventType.DAY:
            unknown = [day for day in self.selected_days if day not in WEEKDAYS]
            if unknown:
                raise InvalidEventConfig(f"Unknown weekday token(s): {unknown}")
            if not self.selected_days:
                raise InvalidEventConfig("A day-based event needs at least one selected day")
        else:
            bad = [value for value in self.selected_dates if not is_date_column(value)]
            if bad:
                raise InvalidEventConfig(f"Selected dates must be YYYY-MM-DD, got {bad}")
            if not self.selected_dates and not (self.start_date and self.end_date):
                raise InvalidEventConfig(
                    "A date-based event needs selected dates or a start and end date"
                )
            if self.start_date and self.end_date and self.start_date > self.end_date:
                raise InvalidEventConfig("start_date must not be after end_date")

        object.__setattr__(self, "_universe", frozenset(self.universe()))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EventConfig":
        """Build from a stored event document (camelCase or snake_case keys)."""
        def pick(snake: str, camel: str, default=None):
            if snake in data:
                return data[snake]
            return data.get(camel, default)

        def as_date(value):
            if value is None or isinstance(value, date):
                return value
            return pendulum.parse(str(value)).date()

        return cls(
            event_type=pick("event_type", "eventType", EventType.DATE.value),
            start_time=pick("start_time", "startTime"),
            end_time=pick("end_time", "endTime"),
            start_date=as_date(pick("start_date", "startDate")),
            end_date=as_date(pick("end_date", "endDate")),
            selected_dates=tuple(pick("selected_dates", "selectedDates", ()) or ()),
            selected_days=tuple(pick("selected_days", "selectedDays", ()) or ()),
        )

    @property
    def is_day_based(self) -> bool:
        return self.event_type is EventType.DAY

    @property
    def start_minutes(self) -> int:
        return parse_clock(self.start_time)

    @property
    def end_minutes(self) -> int:
        return parse_clock(self.end_time, allow_end_of_day=True)

    def accepts_minutes(self, minutes: int) -> bool:
        """Whether a slot starting at ``minutes`` past midnight is inside the event hours."""
        return self.start_minutes <= minutes < self.end_minutes

    def columns(self) -> List[str]:
        """Ordered columns: weekdays in calendar order, or ISO dates ascending."""
        if self.is_day_based:
            return [day for day in WEEKDAYS if day in self.selected_days]

        if self.selected_dates:
            return sorted(set(self.selected_dates))

        columns: List[str] = []
        current = self.start_date
        while current <= self.end_date:
            columns.append(current.isoformat())
            current = current + timedelta(days=1)
        return columns

    def time_rows(self) -> List[str]:
        """Ordered half-hour marks of one column."""
        return time_marks_between(self.start_time, self.end_time)

    def universe(self) -> List[str]:
        """Every valid slot id of the event, column by column."""
        rows = self.time_rows()
        return [format_slot_id(column, mark) for column in self.columns() for mark in rows]

    def universe_set(self) -> FrozenSet[str]:
        return self._universe

    def contains(self, slot_id: str) -> bool:
        """Whether ``slot_id`` belongs to this event's universe."""
        return slot_id in self._universe

    def window(self, timezone: str, today: date | None = None) -> Tuple[DateTime, DateTime]:
        """
        Calendar window to read external events from.

        Date-based events span their first to last column (end exclusive at
        the following midnight). Day-based events use their stored date range,
        or the next few weeks starting today when none is stored.
        """
        if self.is_day_based:
            first = self.start_date
            last = self.end_date
            if first is None or last is None:
                base = today or pendulum.today(timezone).date()
                first = base
                last = base + timedelta(weeks=DAY_EVENT_LOOKAHEAD_WEEKS)
        else:
            columns = self.columns()
            first = date.fromisoformat(columns[0])
            last = date.fromisoformat(columns[-1])

        start = pendulum.datetime(first.year, first.month, first.day, tz=timezone)
        end = pendulum.datetime(last.year, last.month, last.day, tz=timezone).add(days=1)
        return start, end


@dataclass(frozen=True)
class Participant:
    """A respondent as shown in user lists."""
    id: str
    name: str
    photo: str | None = None


@dataclass(frozen=True)
class RecurrenceOccurrence:
    """One concrete instance of a (possibly recurring) calendar entry."""
    start: DateTime
    end: DateTime
    is_recurring: bool = False


@dataclass(frozen=True)
class NormalizedEvent:
    """A provider event reduced to the slots it blocks."""
    event_id: str
    slot_ids: Tuple[str, ...]
    title: str
    source: SourceTag
    is_recurring: bool = False
    is_todo: bool = False


@dataclass
class UserSchedule:
    """
    One participant's merged response to one event.

    ``unavailable`` and ``if_needed`` never share a slot. ``source_of`` tags
    every marked slot with its producer so a single source can be removed
    later without disturbing the others. ``cleared`` holds the slots the
    participant explicitly freed over a lower layer.
    """
    unavailable: set = field(default_factory=set)
    if_needed: set = field(default_factory=set)
    cleared: set = field(default_factory=set)
    source_of: Dict[str, SourceTag] = field(default_factory=dict)
    titles: Dict[str, str] = field(default_factory=dict)

    def state_of(self, slot_id: str) -> SlotState:
        if slot_id in self.unavailable:
            return SlotState.UNAVAILABLE
        if slot_id in self.if_needed:
            return SlotState.IF_NEEDED
        return SlotState.AVAILABLE

    def mark(
        self,
        slot_id: str,
        state: SlotState,
        source: SourceTag,
        title: str | None = None,
    ) -> None:
        """Set a slot's state, keeping the two sets mutually exclusive."""
        if state is SlotState.AVAILABLE:
            self.clear(slot_id)
            return

        if state is SlotState.UNAVAILABLE:
            self.if_needed.discard(slot_id)
            self.unavailable.add(slot_id)
        else:
            self.unavailable.discard(slot_id)
            self.if_needed.add(slot_id)
        self.cleared.discard(slot_id)

        self.source_of[slot_id] = SourceTag(source)
        if title:
            self.titles[slot_id] = title
        else:
            self.titles.pop(slot_id, None)

    def clear(self, slot_id: str) -> None:
        self.unavailable.discard(slot_id)
        self.if_needed.discard(slot_id)
        self.source_of.pop(slot_id, None)
        self.titles.pop(slot_id, None)

    def clear_explicitly(self, slot_id: str) -> None:
        """Free a slot and remember that the participant did so."""
        self.clear(slot_id)
        self.cleared.add(slot_id)

    def slots_from(self, source: SourceTag) -> FrozenSet[str]:
        return frozenset(slot for slot, tag in self.source_of.items() if tag is source)

    def without_source(self, source: SourceTag) -> "UserSchedule":
        """Copy with exactly the slots tagged ``source`` removed."""
        result = self.copy()
        for slot_id in self.slots_from(SourceTag(source)):
            result.clear(slot_id)
        if SourceTag(source) is SourceTag.MANUAL:
            result.cleared.clear()
        return result

    def copy(self) -> "UserSchedule":
        return UserSchedule(
            unavailable=set(self.unavailable),
            if_needed=set(self.if_needed),
            cleared=set(self.cleared),
            source_of=dict(self.source_of),
            titles=dict(self.titles),
        )


@dataclass
class ParticipantDocument:
    """
    Persisted record of one participant's response to one event.

    ``to_dict``/``from_dict`` use the stored field names. ``cleared`` lists
    slots the participant freed by hand so a later sync cannot block them.
    """
    user_id: str
    display_name: str
    unavailable: List[str] = field(default_factory=list)
    if_needed: List[str] = field(default_factory=list)
    photo_url: str | None = None
    is_guest: bool = False
    updated_at: str | None = None
    version: int = 0
    sources: Dict[str, str] = field(default_factory=dict)
    cleared: List[str] = field(default_factory=list)

    @property
    def participant(self) -> Participant:
        return Participant(id=self.user_id, name=self.display_name, photo=self.photo_url)

    @classmethod
    def from_schedule(
        cls,
        schedule: UserSchedule,
        participant: Participant,
        is_guest: bool = False,
        now: DateTime | None = None,
    ) -> "ParticipantDocument":
        stamp = (now or pendulum.now("UTC")).to_iso8601_string()
        return cls(
            user_id=participant.id,
            display_name=participant.name,
            photo_url=participant.photo,
            unavailable=sorted(schedule.unavailable),
            if_needed=sorted(schedule.if_needed - schedule.unavailable),
            is_guest=is_guest,
            updated_at=stamp,
            sources={slot_id: tag.value for slot_id, tag in schedule.source_of.items()},
            cleared=sorted(schedule.cleared),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unavailable": list(self.unavailable),
            "ifNeeded": list(self.if_needed),
            "userId": self.user_id,
            "displayName": self.display_name,
            "photoURL": self.photo_url,
            "isGuest": self.is_guest,
            "updatedAt": self.updated_at,
            "version": self.version,
            "sources": dict(self.sources),
            "cleared": list(self.cleared),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ParticipantDocument":
        user_id = data.get("userId") or data.get("user_id")
        if not user_id:
            raise ValueError("Participant document has no user id")
        return cls(
            user_id=user_id,
            display_name=data.get("displayName") or data.get("display_name") or "User",
            unavailable=list(data.get("unavailable") or []),
            if_needed=list(data.get("ifNeeded") or data.get("if_needed") or []),
            photo_url=data.get("photoURL") or data.get("photo_url"),
            is_guest=bool(data.get("isGuest", data.get("is_guest", False))),
            updated_at=data.get("updatedAt") or data.get("updated_at"),
            version=int(data.get("version", 0)),
            sources=dict(data.get("sources") or {}),
            cleared=list(data.get("cleared") or []),
        )


@dataclass
class AvailabilityBucket:
    count: int = 0
    users: List[Participant] = field(default_factory=list)

    def add(self, participant: Participant) -> None:
        self.count += 1
        self.users.append(participant)


@dataclass
class SlotTally:
    """Per-slot headcount of one event."""
    available: AvailabilityBucket = field(default_factory=AvailabilityBucket)
    if_needed: AvailabilityBucket = field(default_factory=AvailabilityBucket)

    def effective_count(self, exclude_if_needed: bool = False) -> int:
        extra = 0 if exclude_if_needed else self.if_needed.count
        return self.available.count + extra


GroupSchedule = Dict[str, SlotTally]


@dataclass(frozen=True)
class AvailabilityRange:
    """A contiguous run of best-attended slots within one column."""
    column: str
    start_time: str
    end_time: str
    count: int
    percentage: float
    slot_ids: Tuple[str, ...]
    available_users: Tuple[Participant, ...] = ()
    if_needed_users: Tuple[Participant, ...] = ()

    def format_display(self, total: int | None = None) -> str:
        """
        Format the range for display or copying.
        Format: <column> HH:mm ~ HH:mm (count/total)
        """
        text = f"{self.column} {self.start_time} ~ {self.end_time}"
        if total is not None:
            text += f" ({self.count}/{total})"
        return text

