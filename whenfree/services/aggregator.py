"""
Live aggregation of an event's responses.

The aggregator is a consumer task on a store channel: every snapshot it
receives is rebuilt into a fresh ``GroupView`` and republished on the
aggregator's own channels. Published views are never mutated.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Tuple

from ..domain.aggregation import build_group_schedule, rank_most_available
from ..domain.models import AvailabilityRange, EventConfig, GroupSchedule, Participant
from .store import Channel, Store, StoreSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupView:
    """Aggregated state of one event as of one store snapshot."""
    event_id: str
    group_schedule: GroupSchedule
    responded: Tuple[Participant, ...]
    most_available: Tuple[AvailabilityRange, ...]
    exclude_if_needed: bool = False
    sequence: int = 0

    @property
    def total(self) -> int:
        return len(self.responded)

    def rank(self, config: EventConfig, exclude_if_needed: bool) -> List[AvailabilityRange]:
        """Re-rank for a viewer with a different if-needed preference."""
        return rank_most_available(self.group_schedule, config, self.total, exclude_if_needed)


def build_view(
    config: EventConfig,
    snapshot: StoreSnapshot,
    exclude_if_needed: bool = False,
) -> GroupView:
    """Rebuild a GroupView from scratch for one snapshot."""
    group = build_group_schedule(config, snapshot.documents)
    responded = tuple(document.participant for document in snapshot.documents)
    ranges = rank_most_available(group, config, len(responded), exclude_if_needed)
    return GroupView(
        event_id=snapshot.event_id,
        group_schedule=group,
        responded=responded,
        most_available=tuple(ranges),
        exclude_if_needed=exclude_if_needed,
        sequence=snapshot.sequence,
    )


class Aggregator:
    """
    Keeps a GroupView in sync with the store for one event.

    Usage:
        aggregator = Aggregator(store, "evt-1", config)
        views = aggregator.subscribe()
        aggregator.start()
        view = await views.get()
        ...
        await aggregator.close()
    """

    def __init__(
        self,
        store: Store,
        event_id: str,
        config: EventConfig,
        exclude_if_needed: bool = False,
    ) -> None:
        self._store = store
        self.event_id = event_id
        self.config = config
        self.exclude_if_needed = exclude_if_needed
        self._subscribers: List[Channel[GroupView]] = []
        self._source: Channel[StoreSnapshot] | None = None
        self._task: asyncio.Task | None = None
        self.latest: GroupView | None = None

    def subscribe(self) -> Channel[GroupView]:
        """Open a view channel; it receives the latest view right away when one exists."""
        channel: Channel[GroupView] = Channel()
        self._subscribers.append(channel)
        if self.latest is not None:
            channel.publish(self.latest)
        return channel

    def start(self) -> asyncio.Task:
        """Start the consumer task on the running loop."""
        if self._task is not None:
            return self._task
        self._source = self._store.subscribe(self.event_id)
        self._task = asyncio.create_task(self._run(self._source))
        return self._task

    async def _run(self, source: Channel[StoreSnapshot]) -> None:
        async for snapshot in source:
            view = build_view(self.config, snapshot, self.exclude_if_needed)
            self.latest = view
            logger.debug(
                "Rebuilt view of %s at sequence %d: %d respondent(s)",
                self.event_id,
                view.sequence,
                view.total,
            )
            for channel in self._subscribers:
                channel.publish(view)

        logger.debug("Store channel of %s closed", self.event_id)
        self._close_subscribers()

    async def close(self) -> None:
        """Stop consuming and close every view channel."""
        if self._source is not None:
            self._source.close()
        if self._task is not None:
            await self._task
            self._task = None
        self._close_subscribers()

    def _close_subscribers(self) -> None:
        for channel in self._subscribers:
            channel.close()
