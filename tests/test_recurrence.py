"""
Tests for rounding and recurrence expansion.
"""

import pendulum

from whenfree.domain.models import EventConfig, EventType, RecurrenceOccurrence
from whenfree.domain.recurrence import RecurrenceExpander, RecurrenceSeed, round_down, round_up

TZ = "Asia/Seoul"


def at(text: str):
    return pendulum.parse(text, tz=TZ)


class TestRounding:
    """Tests for half-hour rounding."""

    def test_round_down(self):
        """Starts snap back to the previous half-hour."""
        assert round_down(at("2024-11-25 11:05")) == at("2024-11-25 11:00")
        assert round_down(at("2024-11-25 11:35")) == at("2024-11-25 11:30")
        assert round_down(at("2024-11-25 11:30")) == at("2024-11-25 11:30")

    def test_round_up(self):
        """Ends snap forward to the next half-hour, marks stay put."""
        assert round_up(at("2024-11-25 13:10")) == at("2024-11-25 13:30")
        assert round_up(at("2024-11-25 13:30")) == at("2024-11-25 13:30")
        assert round_up(at("2024-11-25 13:40")) == at("2024-11-25 14:00")
        assert round_up(at("2024-11-25 23:45")) == at("2024-11-26 00:00")

    def test_round_up_counts_seconds(self):
        """A few seconds past a mark still reach into the next slot."""
        assert round_up(at("2024-11-25 13:30:20")) == at("2024-11-25 14:00")


class TestRecurrenceExpander:
    """Tests for RecurrenceExpander."""

    def test_single_event_is_rounded_outward(self, date_event):
        """11:05-13:40 blocks the six slots from 11:00 to 13:30."""
        expander = RecurrenceExpander(date_event, TZ)
        seed = RecurrenceSeed(start=at("2024-11-25 11:05"), end=at("2024-11-25 13:40"))
        start, end = date_event.window(TZ)

        slots = expander.expand(seed, start, end)

        assert slots == [
            "2024-11-25-11:00",
            "2024-11-25-11:30",
            "2024-11-25-12:00",
            "2024-11-25-12:30",
            "2024-11-25-13:00",
            "2024-11-25-13:30",
        ]

    def test_slots_are_clipped_to_event_hours(self):
        """Parts of an occurrence outside the event hours produce no slots."""
        config = EventConfig(
            event_type=EventType.DATE,
            start_time="10:00",
            end_time="12:00",
            selected_dates=("2024-11-25",),
        )
        expander = RecurrenceExpander(config, TZ)
        occurrence = RecurrenceOccurrence(start=at("2024-11-25 09:00"), end=at("2024-11-25 13:00"))

        assert expander.slots_for(occurrence) == [
            "2024-11-25-10:00",
            "2024-11-25-10:30",
            "2024-11-25-11:00",
            "2024-11-25-11:30",
        ]

    def test_other_timezones_are_converted(self, date_event):
        """Occurrences are placed on the local wall clock."""
        expander = RecurrenceExpander(date_event, TZ)
        occurrence = RecurrenceOccurrence(
            start=pendulum.parse("2024-11-25T01:00:00Z"),
            end=pendulum.parse("2024-11-25T02:00:00Z"),
        )

        assert expander.slots_for(occurrence) == ["2024-11-25-10:00", "2024-11-25-10:30"]

    def test_day_event_ignores_one_off_entries(self, day_event):
        """Only recurring entries say something about a weekday."""
        expander = RecurrenceExpander(day_event, TZ)
        one_off = RecurrenceOccurrence(start=at("2024-11-25 09:00"), end=at("2024-11-25 10:00"))
        series = RecurrenceOccurrence(
            start=at("2024-11-25 09:00"),
            end=at("2024-11-25 10:00"),
            is_recurring=True,
        )

        assert expander.slots_for(one_off) == []
        assert expander.slots_for(series) == ["Mon-09:00", "Mon-09:30"]

    def test_weekly_rule_maps_to_weekdays(self, day_event):
        """A weekly rule on Monday and Wednesday fills both weekday columns once."""
        expander = RecurrenceExpander(day_event, TZ)
        seed = RecurrenceSeed(
            start=at("2024-11-25 09:00"),
            end=at("2024-11-25 10:00"),
            rrule="FREQ=WEEKLY;BYDAY=MO,WE",
        )
        start, end = day_event.window(TZ)

        occurrences = list(expander.occurrences(seed, start, end))
        slots = expander.expand(seed, start, end)

        assert len(occurrences) == 4
        assert all(occurrence.is_recurring for occurrence in occurrences)
        assert slots == ["Mon-09:00", "Mon-09:30", "Wed-09:00", "Wed-09:30"]

    def test_rule_skips_exdates_and_earlier_occurrences(self, date_event):
        """Excluded dates and occurrences before the window are dropped."""
        expander = RecurrenceExpander(date_event, TZ)
        seed = RecurrenceSeed(
            start=at("2024-11-20 15:00"),
            end=at("2024-11-20 16:00"),
            rrule="FREQ=DAILY",
            exdates=(at("2024-11-26 15:00"),),
        )
        start, end = date_event.window(TZ)

        occurrences = list(expander.occurrences(seed, start, end))

        assert [occurrence.start.to_date_string() for occurrence in occurrences] == ["2024-11-25"]
        assert expander.expand(seed, start, end) == ["2024-11-25-15:00", "2024-11-25-15:30"]

    def test_expansion_is_bounded(self, date_event):
        """Runaway rules stop at the occurrence limit."""
        expander = RecurrenceExpander(date_event, TZ, max_occurrences=5)
        seed = RecurrenceSeed(
            start=at("2024-11-25 09:00"),
            end=at("2024-11-25 09:30"),
            rrule="FREQ=HOURLY",
        )
        start, end = date_event.window(TZ)

        assert len(list(expander.occurrences(seed, start, end))) == 5

    def test_old_series_still_expands_in_window(self, date_event):
        """A daily series started years ago blocks the window's mornings."""
        expander = RecurrenceExpander(date_event, TZ)
        seed = RecurrenceSeed(
            start=at("2021-01-04 09:00"),
            end=at("2021-01-04 09:30"),
            rrule="FREQ=DAILY",
        )
        start, end = date_event.window(TZ)

        assert expander.expand(seed, start, end) == ["2024-11-25-09:00", "2024-11-26-09:00"]

    def test_limit_counts_only_occurrences_in_window(self, date_event):
        """Occurrences before the window do not use up the limit."""
        expander = RecurrenceExpander(date_event, TZ, max_occurrences=5)
        seed = RecurrenceSeed(
            start=at("2024-10-01 09:00"),
            end=at("2024-10-01 09:30"),
            rrule="FREQ=HOURLY",
        )
        start, end = date_event.window(TZ)

        occurrences = list(expander.occurrences(seed, start, end))

        assert len(occurrences) == 5
        assert occurrences[0].start == at("2024-11-25 00:00")

    def test_floating_until_is_accepted(self, date_event):
        """An UNTIL without zone still expands against a zoned start."""
        expander = RecurrenceExpander(date_event, TZ)
        seed = RecurrenceSeed(
            start=at("2024-11-25 09:00"),
            end=at("2024-11-25 09:30"),
            rrule="FREQ=DAILY;UNTIL=20241126T090000",
        )
        start, end = date_event.window(TZ)

        assert expander.expand(seed, start, end) == ["2024-11-25-09:00", "2024-11-26-09:00"]
