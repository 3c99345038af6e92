"""
Application service for one participant's availability.

Coordinates the store, the calendar sync and the domain merger: load the
saved response, rebuild the manual layer, sync calendars, merge and save.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from pendulum import DateTime

from ..domain.drag_selection import SelectionDelta
from ..domain.exceptions import PersistenceConflict, ScheduleLoadError
from ..domain.merger import CalendarSources, ManualLayer, ScheduleMerger
from ..domain.models import (
    EventConfig,
    NormalizedEvent,
    Participant,
    ParticipantDocument,
    SlotState,
    SourceTag,
    UserSchedule,
)
from .calendar_sync import CalendarProvider, CalendarSyncService, SyncResult
from .store import Store

logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    """A freshly merged schedule together with the sync outcome behind it."""
    schedule: UserSchedule
    sync: SyncResult
    calendar_sources: Dict[SourceTag, List[NormalizedEvent]]


def carried_over_events(document: ParticipantDocument | None, source: SourceTag) -> List[NormalizedEvent]:
    """
    Slots a source contributed to the last saved response.

    Used when a provider is temporarily unreachable so its blocks do not
    vanish from the schedule until the next successful sync.
    """
    if document is None:
        return []
    slot_ids = tuple(
        slot_id for slot_id in document.unavailable
        if document.sources.get(slot_id) == source.value
    )
    if not slot_ids:
        return []
    return [
        NormalizedEvent(
            event_id=f"{source.value}-saved",
            slot_ids=slot_ids,
            title="",
            source=source,
        )
    ]


class AvailabilityService:
    """
    Loads, merges and saves participant schedules.

    Dependency inversion toward the ``Store`` and ``CalendarProvider``
    protocols keeps the service usable with the in-memory store and stub
    providers in tests.
    """

    def __init__(
        self,
        store: Store,
        sync_service: CalendarSyncService,
        save_retries: int = 3,
    ) -> None:
        self._store = store
        self._sync = sync_service
        self.save_retries = save_retries

    async def load(self, event_id: str, user_id: str) -> ParticipantDocument | None:
        """
        Read the participant's own saved response.

        Raises:
            ScheduleLoadError: If the stored response cannot be read
        """
        try:
            return await self._store.read(event_id, user_id)
        except (RuntimeError, ValueError, KeyError, TypeError) as exc:
            raise ScheduleLoadError(f"Could not load schedule of {user_id} for {event_id}: {exc}") from exc

    async def load_manual_layer(self, event_id: str, user_id: str) -> ManualLayer:
        document = await self.load(event_id, user_id)
        if document is None:
            return ManualLayer()
        return ManualLayer.from_document(document)

    async def refresh(
        self,
        event_id: str,
        user_id: str,
        config: EventConfig,
        providers: Sequence[CalendarProvider],
        manual: ManualLayer | None = None,
        window: Tuple[DateTime, DateTime] | None = None,
    ) -> RefreshResult:
        """
        Sync every connected calendar and merge it with the other layers.

        Sources that failed transiently keep the blocks of the last saved
        response; sources whose credential expired contribute nothing.

        Args:
            event_id: Event being answered
            user_id: Participant answering
            config: Shape of the event
            providers: Connected calendars
            manual: Current manual edits; loaded from the saved response when omitted
            window: Calendar window override

        Returns:
            RefreshResult with the merged schedule
        """
        document = await self.load(event_id, user_id)
        if manual is None:
            manual = ManualLayer.from_document(document) if document else ManualLayer()
        fixed = await self._store.read_fixed_schedule(user_id)

        sync = await self._sync.sync(user_id, config, providers, window)

        calendar_sources: Dict[SourceTag, List[NormalizedEvent]] = dict(sync.events_by_source)
        for source in sync.unavailable + sync.superseded:
            if source not in calendar_sources:
                calendar_sources[source] = carried_over_events(document, source)
        for source in sync.reconnect_required:
            logger.warning("%s calendar of %s needs to be reconnected", source.value, user_id)

        schedule = self.merge(config, manual, fixed, calendar_sources)
        return RefreshResult(schedule=schedule, sync=sync, calendar_sources=calendar_sources)

    def merge(
        self,
        config: EventConfig,
        manual: ManualLayer | None,
        fixed: Iterable[str],
        calendar_sources: CalendarSources,
    ) -> UserSchedule:
        return ScheduleMerger(config).merge(manual, fixed, calendar_sources)

    def disconnect(
        self,
        config: EventConfig,
        source: SourceTag,
        manual: ManualLayer | None,
        fixed: Iterable[str],
        calendar_sources: Mapping[SourceTag, Sequence[NormalizedEvent]],
    ) -> UserSchedule:
        """Merge again without ``source``."""
        logger.info("Disconnecting %s", SourceTag(source).value)
        return ScheduleMerger(config).disconnect(source, manual, fixed, calendar_sources)

    @staticmethod
    def apply_selection(
        manual: ManualLayer,
        delta: SelectionDelta,
        brush: SlotState,
        schedule: UserSchedule | None = None,
    ) -> None:
        """
        Fold a drag commit into the manual layer.

        A click toggles the clicked cell against what is on screen; a
        rectangle writes the brush (``add``) or an explicit clear (``remove``).
        """
        if delta.is_click:
            for slot_id in delta.slot_ids:
                current = schedule.state_of(slot_id) if schedule is not None else None
                manual.toggle(slot_id, brush, current)
            return
        manual.apply(delta.slot_ids, delta.mode, brush)

    async def save(
        self,
        event_id: str,
        participant: Participant,
        schedule: UserSchedule,
        is_guest: bool = False,
    ) -> ParticipantDocument:
        """
        Persist the merged schedule.

        Re-reads the latest version before each attempt and retries up to
        ``save_retries`` times when another write got in between.

        Raises:
            PersistenceConflict: If every attempt lost the race
        """
        document = ParticipantDocument.from_schedule(schedule, participant, is_guest=is_guest)
        last_error: PersistenceConflict | None = None

        for attempt in range(1, self.save_retries + 1):
            current = await self.load(event_id, participant.id)
            expected = current.version if current is not None else 0
            try:
                stored = await self._store.write(
                    event_id,
                    participant.id,
                    document,
                    expected_version=expected,
                )
            except PersistenceConflict as exc:
                last_error = exc
                logger.warning(
                    "Save attempt %d/%d for %s lost a version race: %s",
                    attempt,
                    self.save_retries,
                    participant.id,
                    exc,
                )
                continue

            logger.info("Saved schedule of %s for %s", participant.id, event_id)
            return stored

        raise last_error or PersistenceConflict(event_id, participant.id, "no save attempt was made")

    async def save_fixed_schedule(self, user_id: str, slot_ids: Sequence[str]) -> List[str]:
        return await self._store.write_fixed_schedule(user_id, slot_ids)

    async def remove(self, event_id: str, user_id: str) -> bool:
        """Withdraw a participant's response from the event."""
        return await self._store.delete(event_id, user_id)
