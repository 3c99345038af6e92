"""
Live store for participant responses.

Every write publishes a full snapshot of the event's responses to the
event's subscribers. Channels hold only the newest snapshot: a slow reader
skips intermediate states but never sees a partial one.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Generic, List, Protocol, Sequence, Tuple, TypeVar

from ..domain.exceptions import InvalidSlotIdError, PersistenceConflict
from ..domain.models import ParticipantDocument
from ..domain.slots import is_weekday_token, split_slot_id

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class Channel(Generic[T]):
    """
    Single-consumer queue that keeps only the latest published value.

    Iterating a channel yields values until it is closed.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, value: T) -> None:
        if self._closed:
            return
        self._replace(value)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._replace(_CLOSED)

    def _replace(self, value: Any) -> None:
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(value)

    async def get(self) -> T:
        """
        Wait for the next value.

        Raises:
            StopAsyncIteration: If the channel was closed
        """
        value = await self._queue.get()
        if value is _CLOSED:
            # Leave the marker for any later reader
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return value

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        return await self.get()


@dataclass(frozen=True)
class StoreSnapshot:
    """All responses of one event at one point in time."""
    event_id: str
    documents: Tuple[ParticipantDocument, ...]
    sequence: int


class Store(Protocol):
    """Persistence operations the services rely on."""

    def subscribe(self, event_id: str) -> Channel[StoreSnapshot]:
        ...

    async def write(
        self,
        event_id: str,
        user_id: str,
        document: ParticipantDocument,
        expected_version: int | None = None,
    ) -> ParticipantDocument:
        ...

    async def read(self, event_id: str, user_id: str) -> ParticipantDocument | None:
        ...

    async def snapshot(self, event_id: str) -> StoreSnapshot:
        ...

    async def delete(self, event_id: str, user_id: str) -> bool:
        ...

    async def write_fixed_schedule(self, user_id: str, slot_ids: Sequence[str]) -> List[str]:
        ...

    async def read_fixed_schedule(self, user_id: str) -> List[str]:
        ...

    async def close(self) -> None:
        ...


class InMemoryStore:
    """
    Process-local store keeping documents in their persisted dict layout.

    Each participant document is owned by its participant: a write replaces
    it wholesale and bumps its version. Passing ``expected_version`` turns
    the write into a compare-and-set.
    """

    def __init__(self) -> None:
        self._documents: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._fixed: Dict[str, List[str]] = {}
        self._subscribers: Dict[str, List[Channel[StoreSnapshot]]] = {}
        self._sequence: Dict[str, int] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Store is closed")

    def subscribe(self, event_id: str) -> Channel[StoreSnapshot]:
        """Open a channel that immediately receives the current snapshot."""
        self._ensure_open()
        channel: Channel[StoreSnapshot] = Channel()
        self._subscribers.setdefault(event_id, []).append(channel)
        channel.publish(self._build_snapshot(event_id))
        return channel

    def unsubscribe(self, event_id: str, channel: Channel[StoreSnapshot]) -> None:
        channels = self._subscribers.get(event_id, [])
        if channel in channels:
            channels.remove(channel)
        channel.close()

    async def write(
        self,
        event_id: str,
        user_id: str,
        document: ParticipantDocument,
        expected_version: int | None = None,
    ) -> ParticipantDocument:
        """
        Store a participant's response.

        Args:
            event_id: Event the response belongs to
            user_id: Owner of the document
            document: Full replacement document
            expected_version: Version the caller last read, or None to skip the check

        Returns:
            The stored document carrying its new version

        Raises:
            PersistenceConflict: If the document belongs to someone else or
                the stored version moved on
        """
        if document.user_id != user_id:
            raise PersistenceConflict(event_id, user_id, "document belongs to another participant")

        async with self._lock:
            self._ensure_open()
            documents = self._documents.setdefault(event_id, {})
            current = documents.get(user_id)
            current_version = int(current["version"]) if current else 0

            if expected_version is not None and expected_version != current_version:
                raise PersistenceConflict(
                    event_id,
                    user_id,
                    f"expected version {expected_version}, found {current_version}",
                )

            stored = document.to_dict()
            stored["version"] = current_version + 1
            documents[user_id] = stored
            logger.debug("Stored %s/%s at version %d", event_id, user_id, stored["version"])
            self._publish(event_id)

        return ParticipantDocument.from_dict(stored)

    async def read(self, event_id: str, user_id: str) -> ParticipantDocument | None:
        self._ensure_open()
        stored = self._documents.get(event_id, {}).get(user_id)
        if stored is None:
            return None
        return ParticipantDocument.from_dict(stored)

    async def snapshot(self, event_id: str) -> StoreSnapshot:
        self._ensure_open()
        return self._build_snapshot(event_id)

    async def delete(self, event_id: str, user_id: str) -> bool:
        """Remove a participant's response. Returns whether one existed."""
        async with self._lock:
            self._ensure_open()
            removed = self._documents.get(event_id, {}).pop(user_id, None)
            if removed is not None:
                self._publish(event_id)
        return removed is not None

    async def write_fixed_schedule(self, user_id: str, slot_ids: Sequence[str]) -> List[str]:
        """
        Replace a user's weekly fixed schedule.

        Raises:
            InvalidSlotIdError: If a slot id is not a weekday slot (``Mon-09:00``)
        """
        schedule: List[str] = []
        for slot_id in slot_ids:
            column, _ = split_slot_id(slot_id)
            if not is_weekday_token(column):
                raise InvalidSlotIdError(f"Fixed schedule slots need a weekday column: {slot_id!r}")
            if slot_id not in schedule:
                schedule.append(slot_id)

        async with self._lock:
            self._ensure_open()
            self._fixed[user_id] = schedule
        return list(schedule)

    async def read_fixed_schedule(self, user_id: str) -> List[str]:
        self._ensure_open()
        return list(self._fixed.get(user_id, []))

    async def close(self) -> None:
        """Close every channel; later operations raise RuntimeError."""
        self._closed = True
        for channels in self._subscribers.values():
            for channel in channels:
                channel.close()
        self._subscribers.clear()

    def _build_snapshot(self, event_id: str) -> StoreSnapshot:
        documents = tuple(
            ParticipantDocument.from_dict(stored)
            for stored in self._documents.get(event_id, {}).values()
        )
        return StoreSnapshot(
            event_id=event_id,
            documents=documents,
            sequence=self._sequence.get(event_id, 0),
        )

    def _publish(self, event_id: str) -> None:
        self._sequence[event_id] = self._sequence.get(event_id, 0) + 1
        channels = self._subscribers.get(event_id, [])
        if not channels:
            return
        snapshot = self._build_snapshot(event_id)
        for channel in channels:
            channel.publish(snapshot)
