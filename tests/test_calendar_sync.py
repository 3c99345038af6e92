"""
Tests for CalendarSyncService.
"""

import asyncio
import logging

import pytest

from whenfree.domain.exceptions import ProviderAuthExpired, ProviderUnavailable
from whenfree.domain.models import SourceTag
from whenfree.domain.normalizer import CalendarNormalizer
from whenfree.services.calendar_sync import CalendarSyncService

STANDUP = {
    "id": "standup",
    "summary": "Standup",
    "start": {"dateTime": "2024-11-25T09:00:00+09:00"},
    "end": {"dateTime": "2024-11-25T10:00:00+09:00"},
}

LUNCH_ICS = (
    "BEGIN:VCALENDAR\r\nVERSION:2.0\r\nPRODID:-//whenfree//tests//EN\r\n"
    "BEGIN:VEVENT\r\nUID:lunch@example.com\r\n"
    "DTSTART:20241126T030000Z\r\nDTEND:20241126T040000Z\r\nSUMMARY:Lunch\r\n"
    "END:VEVENT\r\nEND:VCALENDAR\r\n"
)


class StubProvider:
    """Provider returning canned payloads, an error, or waiting on a gate."""

    def __init__(self, name, payloads=(), error=None, gate=None, delay=0.0):
        self.name = SourceTag(name)
        self.payloads = list(payloads)
        self.error = error
        self.gate = gate
        self.delay = delay
        self.calls = 0

    async def fetch(self, window_start, window_end):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.payloads)


@pytest.fixture
def service():
    return CalendarSyncService(CalendarNormalizer("Asia/Seoul"), timeout_seconds=1.0)


class TestCalendarSyncService:
    """Tests for CalendarSyncService.sync."""

    def test_both_providers_are_normalized(self, service, date_event):
        """Each source contributes its own normalized events."""
        providers = [
            StubProvider("google", [STANDUP]),
            StubProvider("apple", [LUNCH_ICS]),
        ]

        result = asyncio.run(service.sync("alice", date_event, providers))

        assert result.ok
        assert result.events_by_source[SourceTag.GOOGLE][0].slot_ids == ("2024-11-25-09:00", "2024-11-25-09:30")
        assert result.events_by_source[SourceTag.APPLE][0].slot_ids == ("2024-11-26-12:00", "2024-11-26-12:30")

    def test_no_providers(self, service, date_event):
        """Nothing connected means an empty, successful result."""
        result = asyncio.run(service.sync("alice", date_event, []))

        assert result.ok
        assert result.events_by_source == {}

    def test_failure_stays_with_its_provider(self, service, date_event):
        """An expired credential on one source does not affect the other."""
        providers = [
            StubProvider("google", error=ProviderAuthExpired("google", "invalid_grant")),
            StubProvider("apple", [LUNCH_ICS]),
        ]

        result = asyncio.run(service.sync("alice", date_event, providers))

        assert result.reconnect_required == [SourceTag.GOOGLE]
        assert result.unavailable == []
        assert SourceTag.GOOGLE not in result.events_by_source
        assert len(result.events_by_source[SourceTag.APPLE]) == 1

    def test_timeout_is_unavailable(self, date_event):
        """A provider that never answers is reported as unavailable."""
        service = CalendarSyncService(CalendarNormalizer("Asia/Seoul"), timeout_seconds=0.05)
        providers = [StubProvider("apple", [LUNCH_ICS], delay=5.0)]

        result = asyncio.run(service.sync("alice", date_event, providers))

        assert result.unavailable == [SourceTag.APPLE]
        assert isinstance(result.failures[SourceTag.APPLE], ProviderUnavailable)
        assert result.failures[SourceTag.APPLE].retryable

    def test_unexpected_error_is_logged_and_contained(self, service, date_event, caplog):
        """A bug in one provider is reported as unavailable, not raised."""
        providers = [
            StubProvider("google", error=KeyError("items")),
            StubProvider("apple", [LUNCH_ICS]),
        ]

        with caplog.at_level(logging.ERROR):
            result = asyncio.run(service.sync("alice", date_event, providers))

        assert result.unavailable == [SourceTag.GOOGLE]
        assert SourceTag.APPLE in result.events_by_source
        assert "Unexpected google error" in caplog.text

    def test_later_sync_supersedes_earlier(self, service, date_event):
        """The result of a sync overtaken by a newer one for the same source is dropped."""
        async def scenario():
            gate = asyncio.Event()
            slow = StubProvider("google", [STANDUP], gate=gate)
            fast = StubProvider("google", [])

            first = asyncio.create_task(service.sync("alice", date_event, [slow]))
            await asyncio.sleep(0)
            second = await service.sync("alice", date_event, [fast])
            gate.set()
            return await first, second

        first, second = asyncio.run(scenario())

        assert first.superseded == [SourceTag.GOOGLE]
        assert first.events_by_source == {}
        assert second.superseded == []
        assert second.events_by_source[SourceTag.GOOGLE] == []

    def test_other_users_do_not_supersede(self, service, date_event):
        """Generations are tracked per user."""
        async def scenario():
            gate = asyncio.Event()
            first = asyncio.create_task(
                service.sync("alice", date_event, [StubProvider("google", [STANDUP], gate=gate)])
            )
            await asyncio.sleep(0)
            await service.sync("bob", date_event, [StubProvider("google", [])])
            gate.set()
            return await first

        result = asyncio.run(scenario())

        assert result.superseded == []
        assert len(result.events_by_source[SourceTag.GOOGLE]) == 1
