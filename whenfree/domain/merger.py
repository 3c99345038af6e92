"""
Merging of a participant's availability layers into one schedule.

Precedence, low to high: calendar sources < fixed weekly schedule < manual
edits. Manual edits are the participant's explicit intent and are never
overwritten by a background sync; the fixed schedule is a standing
declaration that still yields to a one-off manual override.
"""

import logging
from datetime import date
from typing import Dict, Iterable, Iterator, List, Mapping, Sequence, Tuple

from .models import (
    EventConfig,
    NormalizedEvent,
    ParticipantDocument,
    SelectionMode,
    SlotState,
    SourceTag,
    UserSchedule,
)
from .slots import format_slot_id, is_weekday_token, split_slot_id, weekday_token

logger = logging.getLogger(__name__)

# Calendars share one precedence level; a later one wins a shared slot's tag.
CALENDAR_ORDER: Tuple[SourceTag, ...] = (SourceTag.GOOGLE, SourceTag.APPLE)

CalendarSources = Mapping[SourceTag, Sequence[NormalizedEvent]]


class ManualLayer:
    """
    The participant's own edits: slot id -> explicit state.

    ``SlotState.AVAILABLE`` is an explicit clear that hides whatever a lower
    layer put on the slot.
    """

    def __init__(self, states: Mapping[str, SlotState] | None = None):
        self._states: Dict[str, SlotState] = {
            slot_id: SlotState(state) for slot_id, state in (states or {}).items()
        }

    @classmethod
    def from_document(cls, document: ParticipantDocument) -> "ManualLayer":
        """
        Rebuild the manual layer from a saved response.

        Slots whose stored source is a calendar or the fixed schedule are left
        to those layers; untagged slots count as manual. Saved clears come
        back as explicit ``SlotState.AVAILABLE`` entries.
        """
        manual = cls()
        for slot_ids, state in (
            (document.unavailable, SlotState.UNAVAILABLE),
            (document.if_needed, SlotState.IF_NEEDED),
        ):
            for slot_id in slot_ids:
                tag = document.sources.get(slot_id, SourceTag.MANUAL.value)
                if tag == SourceTag.MANUAL.value:
                    manual.set(slot_id, state)
        for slot_id in document.cleared:
            manual.set(slot_id, SlotState.AVAILABLE)
        return manual

    def set(self, slot_id: str, state: SlotState) -> None:
        self._states[slot_id] = SlotState(state)

    def get(self, slot_id: str) -> SlotState | None:
        return self._states.get(slot_id)

    def forget(self, slot_id: str) -> None:
        """Drop the override so lower layers show through again."""
        self._states.pop(slot_id, None)

    def apply(self, slot_ids: Iterable[str], mode: SelectionMode, brush: SlotState) -> None:
        """
        Apply a drag commit.

        ``add`` paints ``brush`` (unavailable or if-needed); ``remove`` paints
        an explicit available.
        """
        if brush is SlotState.AVAILABLE:
            raise ValueError("The brush must be unavailable or if_needed")

        state = brush if SelectionMode(mode) is SelectionMode.ADD else SlotState.AVAILABLE
        for slot_id in slot_ids:
            self._states[slot_id] = state

    def toggle(self, slot_id: str, brush: SlotState, current: SlotState | None = None) -> SlotState:
        """
        Single-cell click: paint ``brush`` unless the cell already shows it.

        ``current`` is the merged state on screen; without it only this
        layer's own state is consulted.
        """
        if current is None:
            current = self._states.get(slot_id, SlotState.AVAILABLE)
        state = SlotState.AVAILABLE if SlotState(current) is brush else brush
        self._states[slot_id] = state
        return state

    def items(self) -> Iterator[Tuple[str, SlotState]]:
        return iter(list(self._states.items()))

    def copy(self) -> "ManualLayer":
        return ManualLayer(self._states)

    def __len__(self) -> int:
        return len(self._states)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ManualLayer) and self._states == other._states


class ScheduleMerger:
    """
    Combines manual edits, the fixed weekly schedule and calendar sources.

    Algorithm:
    1. Paint every calendar block as unavailable, calendars in a fixed order
    2. Paint the fixed weekly schedule over it
    3. Paint manual edits last, including explicit clears
    Only slots of the event's universe are ever produced.
    """

    def __init__(self, config: EventConfig):
        self.config = config
        self._universe = config.universe_set()

    def merge(
        self,
        manual: ManualLayer | None,
        fixed: Iterable[str],
        calendar_sources: CalendarSources,
    ) -> UserSchedule:
        """
        Build the participant's schedule from its layers.

        Args:
            manual: The participant's own edits
            fixed: Weekday slot ids of the fixed schedule (``Mon-09:00``)
            calendar_sources: Normalized events per calendar source

        Returns:
            A fresh UserSchedule; calling twice with the same inputs yields
            equal results
        """
        schedule = UserSchedule()
        sources = {SourceTag(key): events for key, events in calendar_sources.items()}

        for source in sources:
            if not source.is_calendar:
                raise ValueError(f"{source.value!r} is not a calendar source")

        for source in CALENDAR_ORDER:
            for event in sources.get(source, ()):
                for slot_id in event.slot_ids:
                    if slot_id in self._universe:
                        schedule.mark(slot_id, SlotState.UNAVAILABLE, source, event.title)

        for slot_id in self.expand_fixed(fixed):
            schedule.mark(slot_id, SlotState.UNAVAILABLE, SourceTag.FIXED)

        if manual is not None:
            for slot_id, state in manual.items():
                if slot_id not in self._universe:
                    continue
                if state is SlotState.AVAILABLE:
                    schedule.clear_explicitly(slot_id)
                else:
                    schedule.mark(slot_id, state, SourceTag.MANUAL)

        return schedule

    def disconnect(
        self,
        source: SourceTag,
        manual: ManualLayer | None,
        fixed: Iterable[str],
        calendar_sources: CalendarSources,
    ) -> UserSchedule:
        """Re-merge without one source; slots it shadowed fall back to the next claimant."""
        source = SourceTag(source)
        remaining = {key: events for key, events in calendar_sources.items() if SourceTag(key) is not source}
        if source is SourceTag.FIXED:
            fixed = ()
        if source is SourceTag.MANUAL:
            manual = None
        return self.merge(manual, fixed, remaining)

    def expand_fixed(self, fixed: Iterable[str]) -> List[str]:
        """
        Project weekday slot ids onto this event's columns.

        Day-based events take them as-is for selected days; date-based events
        repeat them on every date with the same weekday.
        """
        marks_by_weekday: Dict[str, List[str]] = {}
        for slot_id in fixed:
            try:
                column, mark = split_slot_id(slot_id)
            except ValueError:
                logger.warning("Ignoring malformed fixed schedule slot %r", slot_id)
                continue
            if not is_weekday_token(column):
                logger.warning("Ignoring fixed schedule slot without weekday %r", slot_id)
                continue
            marks_by_weekday.setdefault(column, []).append(mark)

        expanded: List[str] = []
        for column in self.config.columns():
            weekday = column if self.config.is_day_based else weekday_token(date.fromisoformat(column))
            for mark in marks_by_weekday.get(weekday, ()):
                slot_id = format_slot_id(column, mark)
                if slot_id in self._universe:
                    expanded.append(slot_id)

        return expanded
