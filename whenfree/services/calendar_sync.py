"""
Concurrent synchronization of a participant's connected calendars.

Every provider is fetched in its own task under a timeout. A failure stays
with its provider: the others still contribute, and the manual and fixed
layers apply regardless.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol, Sequence, Tuple

from pendulum import DateTime

from ..domain.exceptions import CalendarProviderError, ProviderAuthExpired, ProviderUnavailable
from ..domain.models import EventConfig, NormalizedEvent, SourceTag
from ..domain.normalizer import CalendarNormalizer

logger = logging.getLogger(__name__)


class CalendarProvider(Protocol):
    """Protocol describing a connected calendar the sync service can read."""

    name: SourceTag

    async def fetch(self, window_start: DateTime, window_end: DateTime) -> List[Any]:
        """Return raw provider payloads for the window."""


@dataclass
class SyncResult:
    """Outcome of one sync pass."""
    events_by_source: Dict[SourceTag, List[NormalizedEvent]] = field(default_factory=dict)
    failures: Dict[SourceTag, CalendarProviderError] = field(default_factory=dict)
    superseded: List[SourceTag] = field(default_factory=list)

    @property
    def reconnect_required(self) -> List[SourceTag]:
        """Sources whose stored credential was rejected."""
        return [
            source for source, error in self.failures.items()
            if isinstance(error, ProviderAuthExpired)
        ]

    @property
    def unavailable(self) -> List[SourceTag]:
        return [
            source for source, error in self.failures.items()
            if isinstance(error, ProviderUnavailable)
        ]

    @property
    def ok(self) -> bool:
        return not self.failures


class CalendarSyncService:
    """
    Fans out provider fetches and normalizes their results.

    A fetch started later for the same (user, provider) pair supersedes an
    earlier one still in flight; the earlier result is discarded when it
    arrives.
    """

    def __init__(self, normalizer: CalendarNormalizer, timeout_seconds: float = 30.0) -> None:
        self._normalizer = normalizer
        self.timeout_seconds = timeout_seconds
        self._generations: Dict[Tuple[str, SourceTag], int] = {}

    def _next_generation(self, user_id: str, source: SourceTag) -> int:
        key = (user_id, source)
        self._generations[key] = self._generations.get(key, 0) + 1
        return self._generations[key]

    def _is_current(self, user_id: str, source: SourceTag, generation: int) -> bool:
        return self._generations.get((user_id, source)) == generation

    async def sync(
        self,
        user_id: str,
        config: EventConfig,
        providers: Sequence[CalendarProvider],
        window: Tuple[DateTime, DateTime] | None = None,
    ) -> SyncResult:
        """
        Fetch and normalize every connected provider concurrently.

        Args:
            user_id: Participant the calendars belong to
            config: Event to normalize against
            providers: Connected calendars, at most one per source
            window: Fetch window; defaults to the event's own window

        Returns:
            SyncResult with normalized events, per-source failures and the
            sources whose results were superseded
        """
        window = window or config.window(self._normalizer.timezone)
        result = SyncResult()
        if not providers:
            return result

        generations = [self._next_generation(user_id, SourceTag(p.name)) for p in providers]
        outcomes = await asyncio.gather(
            *(self._fetch(provider, window) for provider in providers),
            return_exceptions=True,
        )

        for provider, generation, outcome in zip(providers, generations, outcomes):
            source = SourceTag(provider.name)

            if not self._is_current(user_id, source, generation):
                logger.debug("Discarding superseded %s result for %s", source.value, user_id)
                result.superseded.append(source)
                continue

            if isinstance(outcome, CalendarProviderError):
                logger.warning("Calendar sync failed for %s: %s", source.value, outcome)
                result.failures[source] = outcome
                continue

            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(
                    "Unexpected %s error for %s",
                    source.value,
                    user_id,
                    exc_info=(type(outcome), outcome, outcome.__traceback__),
                )
                result.failures[source] = ProviderUnavailable(source.value, str(outcome))
                continue

            events = self._normalizer.normalize(source.value, outcome, config, window)
            result.events_by_source[source] = events
            logger.info(
                "Synced %d %s block(s) for %s",
                len(events),
                source.value,
                user_id,
            )

        return result

    async def _fetch(self, provider: CalendarProvider, window: Tuple[DateTime, DateTime]) -> List[Any]:
        source = SourceTag(provider.name)
        try:
            return await asyncio.wait_for(provider.fetch(*window), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailable(
                source.value, f"no response within {self.timeout_seconds:g}s"
            ) from exc
