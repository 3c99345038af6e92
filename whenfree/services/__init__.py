"""
Service layer helpers that orchestrate adapters, the store and domain logic.
"""

from .aggregator import Aggregator, GroupView, build_view
from .availability import AvailabilityService, RefreshResult
from .calendar_sync import CalendarProvider, CalendarSyncService, SyncResult
from .store import Channel, InMemoryStore, Store, StoreSnapshot

__all__ = [
    "Aggregator",
    "AvailabilityService",
    "CalendarProvider",
    "CalendarSyncService",
    "Channel",
    "GroupView",
    "InMemoryStore",
    "RefreshResult",
    "Store",
    "StoreSnapshot",
    "SyncResult",
    "build_view",
]
