"""
Aggregation of participant responses into per-slot headcounts and the
"most available" ranking built on top of them.
"""

import logging
from typing import Dict, Iterable, List, Sequence

from .models import (
    AvailabilityRange,
    EventConfig,
    GroupSchedule,
    Participant,
    ParticipantDocument,
    SlotTally,
)
from .slots import (
    SLOT_MINUTES,
    format_slot_id,
    mark_to_minutes,
    minutes_to_mark,
    split_slot_id,
)

logger = logging.getLogger(__name__)


def build_group_schedule(
    config: EventConfig,
    documents: Iterable[ParticipantDocument],
) -> GroupSchedule:
    """
    Rebuild the group schedule of an event from every saved response.

    A participant counts as available on a slot they marked neither
    unavailable nor if-needed, and as if-needed on a slot marked if-needed
    only.

    Args:
        config: Event whose universe defines the slots
        documents: One saved response per participant

    Returns:
        A tally for every slot of the universe
    """
    universe = config.universe()
    group: GroupSchedule = {slot_id: SlotTally() for slot_id in universe}

    for document in documents:
        participant = document.participant
        unavailable = set(document.unavailable)
        if_needed = set(document.if_needed) - unavailable

        for slot_id in universe:
            if slot_id in unavailable:
                continue
            if slot_id in if_needed:
                group[slot_id].if_needed.add(participant)
            else:
                group[slot_id].available.add(participant)

    return group


def _intersect(groups: Sequence[List[Participant]]) -> List[Participant]:
    if not groups:
        return []
    common = set.intersection(*(set(users) for users in groups))
    # Keep the first slot's ordering
    return [user for user in groups[0] if user in common]


def rank_most_available(
    group: GroupSchedule,
    config: EventConfig,
    total: int,
    exclude_if_needed: bool = False,
) -> List[AvailabilityRange]:
    """
    Find the time ranges with the highest headcount.

    Algorithm:
    1. Compute each slot's effective count, ignoring zero counts
    2. Keep the slots that reach the maximum
    3. Merge consecutive slots of the same column into one range
    4. Clip the range end to the event's end time

    Args:
        group: Per-slot tallies
        config: Event whose columns and hours order the result
        total: Number of participants who responded
        exclude_if_needed: Count if-needed responses as unavailable

    Returns:
        Ranges sorted by column then start time; empty when nobody is free
    """
    counts: Dict[str, int] = {}
    for slot_id, tally in group.items():
        count = tally.effective_count(exclude_if_needed)
        if count > 0:
            counts[slot_id] = count

    if not counts:
        return []

    best = max(counts.values())
    end_limit = config.end_minutes
    ranges: List[AvailabilityRange] = []

    for column in config.columns():
        run: List[str] = []
        for mark in config.time_rows():
            slot_id = format_slot_id(column, mark)
            if counts.get(slot_id) == best:
                if run and mark_to_minutes(split_slot_id(run[-1])[1]) + SLOT_MINUTES != mark_to_minutes(mark):
                    ranges.append(_close_range(run, group, best, total, end_limit, exclude_if_needed))
                    run = []
                run.append(slot_id)
            elif run:
                ranges.append(_close_range(run, group, best, total, end_limit, exclude_if_needed))
                run = []
        if run:
            ranges.append(_close_range(run, group, best, total, end_limit, exclude_if_needed))

    logger.debug("Found %d range(s) with %d/%d available", len(ranges), best, total)
    return ranges


def _close_range(
    run: List[str],
    group: GroupSchedule,
    count: int,
    total: int,
    end_limit: int,
    exclude_if_needed: bool,
) -> AvailabilityRange:
    column, first_mark = split_slot_id(run[0])
    _, last_mark = split_slot_id(run[-1])
    end = min(mark_to_minutes(last_mark) + SLOT_MINUTES, end_limit)

    available = _intersect([group[slot_id].available.users for slot_id in run])
    if_needed: List[Participant] = []
    if not exclude_if_needed:
        if_needed = _intersect([group[slot_id].if_needed.users for slot_id in run])

    return AvailabilityRange(
        column=column,
        start_time=first_mark,
        end_time=minutes_to_mark(end),
        count=count,
        percentage=round(count / total * 100, 1) if total else 0.0,
        slot_ids=tuple(run),
        available_users=tuple(available),
        if_needed_users=tuple(if_needed),
    )


def format_range(availability: AvailabilityRange, total: int) -> str:
    """Text line for copying: ``2024-11-25 09:00 ~ 10:30 (3/4)``."""
    return availability.format_display(total)
