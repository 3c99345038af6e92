"""
Domain layer - Pure scheduling logic without I/O.
"""

from .aggregation import build_group_schedule, format_range, rank_most_available
from .coordinates import Coordinate, CoordinateCache, DragSelection, SelectionCache
from .drag_selection import DragSelectionEngine, PointerEvent, PointerKind, SelectionDelta
from .merger import ManualLayer, ScheduleMerger
from .models import (
    AvailabilityRange,
    EventConfig,
    EventType,
    GroupSchedule,
    NormalizedEvent,
    Participant,
    ParticipantDocument,
    SelectionMode,
    SlotState,
    SourceTag,
    UserSchedule,
)
from .normalizer import CalendarNormalizer
from .recurrence import RecurrenceExpander, RecurrenceSeed

__all__ = [
    "AvailabilityRange",
    "CalendarNormalizer",
    "Coordinate",
    "CoordinateCache",
    "DragSelection",
    "DragSelectionEngine",
    "EventConfig",
    "EventType",
    "GroupSchedule",
    "ManualLayer",
    "NormalizedEvent",
    "Participant",
    "ParticipantDocument",
    "PointerEvent",
    "PointerKind",
    "RecurrenceExpander",
    "RecurrenceSeed",
    "ScheduleMerger",
    "SelectionCache",
    "SelectionDelta",
    "SelectionMode",
    "SlotState",
    "SourceTag",
    "UserSchedule",
    "build_group_schedule",
    "format_range",
    "rank_most_available",
]
