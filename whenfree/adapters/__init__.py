"""
Adapters layer - External integrations (Google Calendar, CalDAV, OS keyring).
"""

from .caldav_client import AppleCalendarProvider, CalDAVClient, DavClientCache
from .credentials import CredentialStore, SecretVault
from .google_calendar import GoogleCalendarClient
from .mock_calendar import MockCalendarProvider

__all__ = [
    "AppleCalendarProvider",
    "CalDAVClient",
    "CredentialStore",
    "DavClientCache",
    "GoogleCalendarClient",
    "MockCalendarProvider",
    "SecretVault",
]
