"""
Storage of calendar credentials in the OS keyring.

Secrets are encrypted by an external vault before they reach the keyring and
decrypted only when a provider is about to fetch.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Protocol

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from ..domain.exceptions import CredentialStorageError
from ..domain.models import SourceTag

logger = logging.getLogger(__name__)

KEYRING_SERVICE_NAME = "whenfree"


class SecretVault(Protocol):
    """Protocol describing the encryption service credentials pass through."""

    async def encrypt(self, plaintext: str, context: str) -> str:
        """Return ciphertext bound to ``context``."""

    async def decrypt(self, ciphertext: str) -> str:
        """Return the plaintext of ``ciphertext``."""


class CredentialStore:
    """
    Keeps one encrypted credential per (provider, user).

    Entries live under the ``whenfree`` keyring service with the username
    ``<provider>:<user_id>``.
    """

    def __init__(self, vault: SecretVault, service_name: str = KEYRING_SERVICE_NAME):
        self._vault = vault
        self.service_name = service_name

    @staticmethod
    def key_for(provider: SourceTag, user_id: str) -> str:
        return f"{SourceTag(provider).value}:{user_id}"

    async def save(self, provider: SourceTag, user_id: str, secret: Dict[str, Any]) -> None:
        """
        Encrypt and store a credential.

        Raises:
            CredentialStorageError: If the keyring rejects the write
        """
        key = self.key_for(provider, user_id)
        ciphertext = await self._vault.encrypt(json.dumps(secret, sort_keys=True), key)
        try:
            await asyncio.to_thread(keyring.set_password, self.service_name, key, ciphertext)
        except KeyringError as exc:
            raise CredentialStorageError(f"Could not store credentials for {key}: {exc}") from exc
        logger.debug("Stored credentials for %s", key)

    async def load(self, provider: SourceTag, user_id: str) -> Dict[str, Any] | None:
        """
        Read and decrypt a credential.

        Returns:
            The secret mapping, or None when the user never connected this provider

        Raises:
            CredentialStorageError: If the keyring cannot be read or the
                stored value is not a credential
        """
        key = self.key_for(provider, user_id)
        try:
            ciphertext = await asyncio.to_thread(keyring.get_password, self.service_name, key)
        except KeyringError as exc:
            raise CredentialStorageError(f"Could not read credentials for {key}: {exc}") from exc

        if ciphertext is None:
            return None

        plaintext = await self._vault.decrypt(ciphertext)
        try:
            secret = json.loads(plaintext)
        except json.JSONDecodeError as exc:
            raise CredentialStorageError(f"Stored credentials for {key} are corrupt") from exc
        if not isinstance(secret, dict):
            raise CredentialStorageError(f"Stored credentials for {key} are corrupt")
        return secret

    async def delete(self, provider: SourceTag, user_id: str) -> bool:
        """Forget a credential. Returns whether one was stored."""
        key = self.key_for(provider, user_id)
        try:
            await asyncio.to_thread(keyring.delete_password, self.service_name, key)
        except PasswordDeleteError:
            return False
        except KeyringError as exc:
            logger.warning("Could not remove credentials for %s from keyring: %s", key, exc)
            return False
        logger.info("Removed credentials for %s", key)
        return True
