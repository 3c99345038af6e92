"""
Tests for CalendarNormalizer.
"""

import logging

import pytest

from whenfree.domain.models import SourceTag
from whenfree.domain.normalizer import CalendarNormalizer

TZ = "Asia/Seoul"


def rest_event(event_id, start, end, **extra):
    event = {
        "id": event_id,
        "summary": extra.pop("summary", event_id.title()),
        "status": "confirmed",
        "start": {"dateTime": start},
        "end": {"dateTime": end},
    }
    event.update(extra)
    return event


def ics(*components: str) -> str:
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//whenfree//tests//EN"]
    for component in components:
        lines.extend(component.strip().splitlines())
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


@pytest.fixture
def normalizer():
    return CalendarNormalizer(TZ)


class TestGoogleEvents:
    """Tests for REST events from the Google provider."""

    def test_event_becomes_slots(self, normalizer, date_event):
        """A confirmed event blocks its slots and keeps its title."""
        raw = [rest_event("standup", "2024-11-25T09:00:00+09:00", "2024-11-25T10:00:00+09:00")]

        events = normalizer.normalize("google", raw, date_event)

        assert len(events) == 1
        assert events[0].event_id == "standup"
        assert events[0].slot_ids == ("2024-11-25-09:00", "2024-11-25-09:30")
        assert events[0].title == "Standup"
        assert events[0].source is SourceTag.GOOGLE
        assert not events[0].is_recurring

    def test_utc_times_use_local_wall_clock(self, normalizer, date_event):
        """Times in other offsets land on the configured timezone's grid."""
        raw = [rest_event("call", "2024-11-26T05:00:00Z", "2024-11-26T05:30:00Z")]

        events = normalizer.normalize("google", raw, date_event)

        assert events[0].slot_ids == ("2024-11-26-14:00",)

    def test_cancelled_and_out_of_hours_events_are_dropped(self, normalizer, date_event):
        """Cancelled events and events outside the event hours block nothing."""
        raw = [
            rest_event("gone", "2024-11-25T10:00:00+09:00", "2024-11-25T11:00:00+09:00", status="cancelled"),
            rest_event("dinner", "2024-11-25T19:00:00+09:00", "2024-11-25T21:00:00+09:00"),
        ]

        assert normalizer.normalize("google", raw, date_event) == []

    def test_all_day_event_blocks_event_hours(self, normalizer, date_event):
        """All-day events cover every slot of their date."""
        raw = [{
            "id": "holiday",
            "summary": "Holiday",
            "start": {"date": "2024-11-26"},
            "end": {"date": "2024-11-27"},
        }]

        events = normalizer.normalize("google", raw, date_event)

        assert len(events[0].slot_ids) == 18
        assert events[0].slot_ids[0] == "2024-11-26-09:00"
        assert events[0].slot_ids[-1] == "2024-11-26-17:30"

    def test_malformed_event_is_skipped(self, normalizer, date_event, caplog):
        """One broken item is logged and the rest still normalize."""
        raw = [
            {"id": "broken", "start": {}, "end": {}},
            "not an event",
            rest_event("ok", "2024-11-25T12:00:00+09:00", "2024-11-25T12:30:00+09:00"),
        ]

        with caplog.at_level(logging.WARNING):
            events = normalizer.normalize("google", raw, date_event)

        assert [event.event_id for event in events] == ["ok"]
        assert "broken" in caplog.text

    def test_day_event_keeps_recurring_events_on_selected_days(self, normalizer, day_event):
        """Day events keep series members on selected weekdays only."""
        raw = [
            rest_event("weekly", "2024-11-25T09:00:00+09:00", "2024-11-25T10:00:00+09:00",
                       recurringEventId="weekly-series"),
            rest_event("one-off", "2024-11-27T11:00:00+09:00", "2024-11-27T12:00:00+09:00"),
            rest_event("tuesday", "2024-11-26T09:00:00+09:00", "2024-11-26T10:00:00+09:00",
                       recurringEventId="tuesday-series"),
        ]

        events = normalizer.normalize("google", raw, day_event)

        assert [event.event_id for event in events] == ["weekly"]
        assert events[0].slot_ids == ("Mon-09:00", "Mon-09:30")
        assert events[0].is_recurring

    def test_unknown_provider_is_rejected(self, normalizer, date_event):
        """Only calendar sources can be normalized."""
        with pytest.raises(ValueError):
            normalizer.normalize("manual", [], date_event)


class TestICalendarEvents:
    """Tests for iCalendar payloads from the CalDAV provider."""

    def test_vevent_is_rounded(self, normalizer, date_event):
        """11:05-13:40 local time blocks six slots."""
        payload = ics("""
BEGIN:VEVENT
UID:lunch@example.com
DTSTART:20241125T020500Z
DTEND:20241125T044000Z
SUMMARY:Long lunch
END:VEVENT
""")

        events = normalizer.normalize("apple", [payload], date_event)

        assert len(events) == 1
        assert events[0].title == "Long lunch"
        assert events[0].source is SourceTag.APPLE
        assert events[0].slot_ids == (
            "2024-11-25-11:00",
            "2024-11-25-11:30",
            "2024-11-25-12:00",
            "2024-11-25-12:30",
            "2024-11-25-13:00",
            "2024-11-25-13:30",
        )

    def test_recurring_vevent_yields_one_event_per_occurrence(self, normalizer, date_event):
        """Each occurrence of a series gets its own id."""
        payload = ics("""
BEGIN:VEVENT
UID:gym@example.com
DTSTART:20241120T000000Z
DTEND:20241120T010000Z
RRULE:FREQ=DAILY
SUMMARY:Gym
END:VEVENT
""")

        events = normalizer.normalize("apple", [payload], date_event)

        assert len(events) == 2
        assert all(event.event_id.startswith("gym@example.com_") for event in events)
        assert len({event.event_id for event in events}) == 2
        assert events[0].slot_ids == ("2024-11-25-09:00", "2024-11-25-09:30")
        assert events[1].slot_ids == ("2024-11-26-09:00", "2024-11-26-09:30")
        assert all(event.is_recurring for event in events)

    def test_open_vtodo_blocks_an_hour(self, normalizer, date_event):
        """Reminders with a due time block one hour and are marked as such."""
        payload = ics("""
BEGIN:VTODO
UID:report@example.com
DUE:20241126T030000Z
SUMMARY:Report
STATUS:NEEDS-ACTION
END:VTODO
""", """
BEGIN:VTODO
UID:done@example.com
DUE:20241126T050000Z
SUMMARY:Done already
STATUS:COMPLETED
END:VTODO
""", """
BEGIN:VTODO
UID:someday@example.com
SUMMARY:No due date
END:VTODO
""")

        events = normalizer.normalize("apple", [payload], date_event)

        assert len(events) == 1
        assert events[0].title == "📌 Report"
        assert events[0].is_todo
        assert events[0].slot_ids == ("2024-11-26-12:00", "2024-11-26-12:30")

    def test_component_without_start_is_skipped(self, normalizer, date_event):
        """A VEVENT without DTSTART does not stop the others."""
        payload = ics("""
BEGIN:VEVENT
UID:broken@example.com
SUMMARY:Broken
END:VEVENT
""", """
BEGIN:VEVENT
UID:fine@example.com
DTSTART:20241125T060000Z
DTEND:20241125T063000Z
END:VEVENT
""")

        events = normalizer.normalize("apple", [payload], date_event)

        assert [event.event_id for event in events] == ["fine@example.com"]
        assert events[0].title == "Untitled Event"

    def test_normalization_is_idempotent(self, normalizer, date_event):
        """Normalizing the same payload twice gives the same result."""
        payload = ics("""
BEGIN:VEVENT
UID:twice@example.com
DTSTART:20241125T060000Z
DTEND:20241125T070000Z
END:VEVENT
""")

        first = normalizer.normalize("apple", [payload], date_event)
        second = normalizer.normalize("apple", [payload], date_event)

        assert first == second
