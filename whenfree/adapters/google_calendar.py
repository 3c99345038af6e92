"""
Google Calendar REST client for fetching a participant's events.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Callable, Dict, List

import requests
from pendulum import DateTime

from ..config import GoogleSettings
from ..domain.exceptions import ProviderAuthExpired, ProviderUnavailable
from ..domain.models import SourceTag
from .credentials import CredentialStore

logger = logging.getLogger(__name__)


class GoogleCalendarClient:
    """
    Client for the Google Calendar ``events.list`` endpoint.

    Series are expanded by Google (``singleEvents``) so every returned item is
    a concrete occurrence; members of a series carry ``recurringEventId``.
    Credentials are read from the credential store on each fetch and the
    access token is refreshed once when Google rejects it.
    """

    API_ENDPOINT = "https://www.googleapis.com/calendar/v3"
    TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
    PAGE_SIZE = 250
    RETRY_STATUS_CODES = (403, 429)

    name = SourceTag.GOOGLE

    def __init__(
        self,
        credentials: CredentialStore,
        user_id: str,
        settings: GoogleSettings | None = None,
        max_retries: int = 3,
        timeout: float = 30.0,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the Google Calendar client.

        Args:
            credentials: Store holding the user's token mapping
            user_id: Participant whose calendar is read
            settings: OAuth client and calendar id
            max_retries: Attempts for rate-limited requests
            timeout: Per-request timeout in seconds
            session: Optional requests session (mainly for tests)
            sleep: Backoff sleep function
        """
        self._credentials = credentials
        self.user_id = user_id
        self.settings = settings or GoogleSettings()
        self.max_retries = max_retries
        self.timeout = timeout
        self._session = session or requests.Session()
        self._sleep = sleep

    async def fetch(self, window_start: DateTime, window_end: DateTime) -> List[Dict[str, Any]]:
        """
        Read the user's events in the window.

        Raises:
            ProviderAuthExpired: If no credential is stored or it was revoked
            ProviderUnavailable: On network failures or exhausted retries
        """
        secret = await self._credentials.load(self.name, self.user_id)
        if not secret:
            raise ProviderAuthExpired(self.name.value, "calendar is not connected")

        original_token = secret.get("access_token")
        events = await asyncio.to_thread(self.list_events, secret, window_start, window_end)

        if secret.get("access_token") != original_token:
            await self._credentials.save(self.name, self.user_id, secret)
        return events

    def list_events(
        self,
        secret: Dict[str, Any],
        time_min: DateTime,
        time_max: DateTime,
    ) -> List[Dict[str, Any]]:
        """
        List every event between ``time_min`` and ``time_max``.

        Args:
            secret: Token mapping (``access_token``, ``refresh_token``); updated
                in place when the access token is refreshed
            time_min: Start of the time window
            time_max: End of the time window

        Returns:
            Raw event resources across all result pages
        """
        url = f"{self.API_ENDPOINT}/calendars/{self.settings.calendar_id}/events"
        params: Dict[str, Any] = {
            "timeMin": time_min.to_iso8601_string(),
            "timeMax": time_max.to_iso8601_string(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": self.PAGE_SIZE,
        }

        events: List[Dict[str, Any]] = []
        refreshed = False

        while True:
            response = self._get_with_backoff(url, params, secret)

            if response.status_code == 401:
                if refreshed or not secret.get("refresh_token"):
                    raise ProviderAuthExpired(self.name.value, "access token was rejected")
                self.refresh_access_token(secret)
                refreshed = True
                continue

            self._raise_for_status(response)
            data = response.json()
            events.extend(data.get("items", []))

            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token

        logger.debug("Fetched %d Google event(s) for %s", len(events), self.user_id)
        return events

    def refresh_access_token(self, secret: Dict[str, Any]) -> str:
        """
        Exchange the refresh token for a new access token.

        Raises:
            ProviderAuthExpired: If Google answers ``invalid_grant`` or 401
            ProviderUnavailable: On network failures
        """
        payload = {
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
            "refresh_token": secret.get("refresh_token"),
            "grant_type": "refresh_token",
        }

        try:
            response = self._session.post(self.TOKEN_ENDPOINT, data=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ProviderUnavailable(self.name.value, f"token refresh failed: {e}") from e

        if response.status_code in (400, 401):
            error = self._error_code(response)
            if response.status_code == 401 or error == "invalid_grant":
                raise ProviderAuthExpired(self.name.value, f"refresh token rejected ({error or 401})")

        self._raise_for_status(response)
        token = response.json().get("access_token")
        if not token:
            raise ProviderAuthExpired(self.name.value, "token response has no access token")

        secret["access_token"] = token
        logger.info("Refreshed Google access token for %s", self.user_id)
        return token

    def _get_with_backoff(
        self,
        url: str,
        params: Dict[str, Any],
        secret: Dict[str, Any],
    ) -> requests.Response:
        """GET with exponential backoff on rate limiting (403/429)."""
        for attempt in range(self.max_retries):
            headers = {"Authorization": f"Bearer {secret.get('access_token', '')}"}
            try:
                response = self._session.get(url, headers=headers, params=params, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                raise ProviderUnavailable(self.name.value, f"request failed: {e}") from e

            if response.status_code not in self.RETRY_STATUS_CODES:
                return response

            if attempt < self.max_retries - 1:
                delay = 2 ** attempt + random.random()
                logger.warning(
                    "Google rate limited the request (HTTP %d); retrying in %.1fs",
                    response.status_code,
                    delay,
                )
                self._sleep(delay)

        raise ProviderUnavailable(
            self.name.value,
            f"rate limited after {self.max_retries} attempts (HTTP {response.status_code})",
        )

    def _raise_for_status(self, response: requests.Response) -> None:
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise ProviderUnavailable(self.name.value, f"HTTP {response.status_code}: {e}") from e

    @staticmethod
    def _error_code(response: requests.Response) -> str | None:
        try:
            return response.json().get("error")
        except ValueError:
            return None
