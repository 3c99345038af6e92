"""
Domain-specific exception hierarchy for whenfree.
"""


class WhenFreeError(Exception):
    """Base class for all application-level errors."""


class InvalidSlotIdError(WhenFreeError, ValueError):
    """Raised when a string is not a well-formed ``<column>-<HH:mm>`` slot id."""


class InvalidEventConfig(WhenFreeError, ValueError):
    """Raised when an event configuration cannot define a slot universe."""


class CalendarProviderError(WhenFreeError):
    """Raised when calendar data cannot be fetched from a provider."""

    retryable = False

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class ProviderUnavailable(CalendarProviderError):
    """Network failure or timeout. Results may be incomplete; retry later."""

    retryable = True


class ProviderAuthExpired(CalendarProviderError):
    """Stored credential was rejected. The calendar must be reconnected."""


class MalformedEvent(WhenFreeError):
    """A single raw event or component could not be parsed."""

    def __init__(self, provider: str, item_id: str, reason: str):
        super().__init__(f"{provider} item {item_id!r}: {reason}")
        self.provider = provider
        self.item_id = item_id
        self.reason = reason


class PersistenceConflict(WhenFreeError):
    """Writing a participant document failed or lost a version race."""

    def __init__(self, event_id: str, user_id: str, message: str):
        super().__init__(f"{event_id}/{user_id}: {message}")
        self.event_id = event_id
        self.user_id = user_id


class ScheduleLoadError(WhenFreeError):
    """The participant's own saved schedule could not be read."""


class CredentialStorageError(WhenFreeError):
    """Stored calendar credentials could not be written or read."""
