"""
Shared fixtures for the whenfree test suite.
"""

from datetime import date
from typing import Dict, Tuple

import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

from whenfree.domain.models import EventConfig, EventType

TIMEZONE = "Asia/Seoul"


class InMemoryKeyring(KeyringBackend):
    """Keyring backend that never leaves the process."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.passwords: Dict[Tuple[str, str], str] = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        if (service, username) not in self.passwords:
            raise PasswordDeleteError("not found")
        del self.passwords[(service, username)]


class ReversingVault:
    """Stand-in for the encryption service: reversible and obviously not plaintext."""

    def __init__(self):
        self.contexts = []

    async def encrypt(self, plaintext: str, context: str) -> str:
        self.contexts.append(context)
        return "enc:" + plaintext[::-1]

    async def decrypt(self, ciphertext: str) -> str:
        return ciphertext[len("enc:"):][::-1]


@pytest.fixture
def memory_keyring():
    previous = keyring.get_keyring()
    backend = InMemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture
def vault():
    return ReversingVault()


@pytest.fixture
def date_event():
    """Two dates (Monday and Tuesday), 09:00-18:00."""
    return EventConfig(
        event_type=EventType.DATE,
        start_time="09:00",
        end_time="18:00",
        selected_dates=("2024-11-25", "2024-11-26"),
    )


@pytest.fixture
def morning_event():
    """One Monday, 09:00-11:00 (four slots)."""
    return EventConfig(
        event_type=EventType.DATE,
        start_time="09:00",
        end_time="11:00",
        selected_dates=("2024-11-25",),
    )


@pytest.fixture
def day_event():
    """Recurring Mondays and Wednesdays, 09:00-18:00."""
    return EventConfig(
        event_type=EventType.DAY,
        start_time="09:00",
        end_time="18:00",
        selected_days=("Mon", "Wed"),
        start_date=date(2024, 11, 25),
        end_date=date(2024, 12, 8),
    )
