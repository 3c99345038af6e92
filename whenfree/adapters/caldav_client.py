"""
CalDAV client for iCloud (and other CalDAV servers) using plain requests.

Discovery follows RFC 4791: the current user principal, then its calendar
home, then the calendar collections inside it. Events and reminders are
read with ``calendar-query`` REPORTs restricted to a time range.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Tuple
from urllib.parse import urljoin

import requests
from pendulum import DateTime

from ..cache import TTLCache
from ..config import CalDAVSettings
from ..domain.exceptions import ProviderAuthExpired, ProviderUnavailable
from ..domain.models import SourceTag
from .credentials import CredentialStore

logger = logging.getLogger(__name__)

NS = {
    "d": "DAV:",
    "c": "urn:ietf:params:xml:ns:caldav",
}

PRINCIPAL_BODY = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:">
  <d:prop><d:current-user-principal/></d:prop>
</d:propfind>"""

HOME_SET_BODY = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">
  <d:prop><c:calendar-home-set/></d:prop>
</d:propfind>"""

COLLECTIONS_BODY = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">
  <d:prop>
    <d:resourcetype/>
    <d:displayname/>
    <c:supported-calendar-component-set/>
  </d:prop>
</d:propfind>"""

QUERY_BODY = """<?xml version="1.0" encoding="utf-8"?>
<c:calendar-query xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">
  <d:prop><c:calendar-data/></d:prop>
  <c:filter>
    <c:comp-filter name="VCALENDAR">
      <c:comp-filter name="{component}">
        <c:time-range start="{start}" end="{end}"/>
      </c:comp-filter>
    </c:comp-filter>
  </c:filter>
</c:calendar-query>"""

QUERIED_COMPONENTS = ("VEVENT", "VTODO")


def _caldav_time(moment: DateTime) -> str:
    return moment.in_timezone("UTC").format("YYYYMMDD[T]HHmmss[Z]")


class CalDAVClient:
    """
    Client for one CalDAV account.

    Calendar collections are discovered once per client and reused.
    """

    def __init__(
        self,
        server_url: str,
        username: str,
        password: str,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ):
        self.server_url = server_url.rstrip("/") + "/"
        self.username = username
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.auth = (username, password)
        self._calendars: List[str] | None = None

    def _request(self, method: str, url: str, body: str, depth: str) -> ET.Element:
        headers = {"Depth": depth, "Content-Type": "application/xml; charset=utf-8"}
        try:
            response = self._session.request(
                method,
                url,
                data=body.encode("utf-8"),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise ProviderUnavailable(SourceTag.APPLE.value, f"{method} {url} failed: {e}") from e

        if response.status_code in (401, 403):
            raise ProviderAuthExpired(
                SourceTag.APPLE.value,
                f"server rejected the app password (HTTP {response.status_code})",
            )
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise ProviderUnavailable(SourceTag.APPLE.value, f"HTTP {response.status_code}: {e}") from e

        try:
            return ET.fromstring(response.content)
        except ET.ParseError as e:
            raise ProviderUnavailable(SourceTag.APPLE.value, f"unreadable {method} response: {e}") from e

    def _href(self, root: ET.Element, prop_path: str) -> str | None:
        element = root.find(f".//{prop_path}/d:href", NS)
        if element is None or not (element.text or "").strip():
            return None
        return urljoin(self.server_url, element.text.strip())

    def discover_calendars(self) -> List[str]:
        """
        Find the URLs of every calendar collection of the account.

        Returns:
            Absolute collection URLs holding events or reminders
        """
        if self._calendars is not None:
            return self._calendars

        root = self._request("PROPFIND", self.server_url, PRINCIPAL_BODY, depth="0")
        principal = self._href(root, "d:current-user-principal")
        if principal is None:
            raise ProviderUnavailable(SourceTag.APPLE.value, "server did not report a principal")

        root = self._request("PROPFIND", principal, HOME_SET_BODY, depth="0")
        home = self._href(root, "c:calendar-home-set")
        if home is None:
            raise ProviderUnavailable(SourceTag.APPLE.value, "server did not report a calendar home")

        root = self._request("PROPFIND", home, COLLECTIONS_BODY, depth="1")
        calendars: List[str] = []
        for response in root.findall("d:response", NS):
            href = response.find("d:href", NS)
            if href is None or response.find(".//d:resourcetype/c:calendar", NS) is None:
                continue
            components = {
                comp.get("name")
                for comp in response.findall(".//c:supported-calendar-component-set/c:comp", NS)
            }
            if components and not components.intersection(QUERIED_COMPONENTS):
                continue
            calendars.append(urljoin(self.server_url, (href.text or "").strip()))

        logger.debug("Discovered %d CalDAV calendar(s) for %s", len(calendars), self.username)
        self._calendars = calendars
        return calendars

    def list_events(self, time_range: Tuple[DateTime, DateTime]) -> List[str]:
        """
        Read every event and reminder overlapping the time range.

        Args:
            time_range: ``(start, end)`` of the window

        Returns:
            iCalendar texts, one per calendar object
        """
        start, end = time_range
        payloads: List[str] = []

        for calendar_url in self.discover_calendars():
            for component in QUERIED_COMPONENTS:
                body = QUERY_BODY.format(
                    component=component,
                    start=_caldav_time(start),
                    end=_caldav_time(end),
                )
                root = self._request("REPORT", calendar_url, body, depth="1")
                for data in root.findall(".//c:calendar-data", NS):
                    if data.text and data.text.strip():
                        payloads.append(data.text)

        logger.debug("Fetched %d CalDAV object(s) for %s", len(payloads), self.username)
        return payloads


class DavClientCache:
    """
    Reuses CalDAV clients (and their discovered calendars) per user.

    Entries are keyed by the user id and a SHA-256 digest of the credentials,
    so a changed app password never reuses a stale client.
    """

    def __init__(self, ttl_seconds: float = 1800.0, settings: CalDAVSettings | None = None):
        self.settings = settings or CalDAVSettings()
        self._cache: TTLCache = TTLCache(ttl_seconds)

    @staticmethod
    def cache_key(user_id: str, username: str, password: str) -> Tuple[str, str]:
        digest = hashlib.sha256(f"{username}:{password}".encode("utf-8")).hexdigest()
        return (user_id, digest)

    def get_client(self, user_id: str, username: str, password: str, timeout: float = 30.0) -> CalDAVClient:
        key = self.cache_key(user_id, username, password)
        client = self._cache.get(key)
        if client is None:
            self.evict()
            client = CalDAVClient(self.settings.server_url, username, password, timeout=timeout)
            self._cache.put(key, client)
            logger.debug("Created CalDAV client for %s", user_id)
        return client

    def invalidate(self, user_id: str) -> int:
        """Forget every client of ``user_id``. Returns how many were dropped."""
        keys = [key for key in self._cache.keys() if key[0] == user_id]
        for key in keys:
            self._cache.pop(key)
        return len(keys)

    def evict(self, now: float | None = None) -> int:
        return self._cache.evict(now)

    def __len__(self) -> int:
        return len(self._cache)


class AppleCalendarProvider:
    """Connected iCloud calendar of one participant."""

    name = SourceTag.APPLE

    def __init__(
        self,
        credentials: CredentialStore,
        user_id: str,
        clients: DavClientCache,
        timeout: float = 30.0,
    ):
        self._credentials = credentials
        self.user_id = user_id
        self._clients = clients
        self.timeout = timeout

    async def fetch(self, window_start: DateTime, window_end: DateTime) -> List[Any]:
        """
        Read events and reminders in the window.

        Raises:
            ProviderAuthExpired: If no app password is stored or it was rejected
            ProviderUnavailable: On network failures
        """
        secret: Dict[str, Any] | None = await self._credentials.load(self.name, self.user_id)
        if not secret or not secret.get("username") or not secret.get("password"):
            raise ProviderAuthExpired(self.name.value, "calendar is not connected")

        client = self._clients.get_client(
            self.user_id,
            secret["username"],
            secret["password"],
            timeout=self.timeout,
        )
        try:
            return await asyncio.to_thread(client.list_events, (window_start, window_end))
        except ProviderAuthExpired:
            self._clients.invalidate(self.user_id)
            raise
