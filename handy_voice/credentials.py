"""Secure credential storage fronted by an in-memory cache.

API keys live in the system's native credential store (Keychain, Credential
Manager, Secret Service) through ``keyring``. Every successful read or write
is memoized for the lifetime of the process so the OS is not asked again,
which on some platforms would prompt the user each time.
"""

import logging
import threading
from typing import Any

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from handy_voice.config import SERVICE_NAME

logger = logging.getLogger(__name__)


class CredentialStorageError(Exception):
    """Raised when credential storage operations fail."""

    pass


def _require_key(provider: str) -> None:
    if not provider or not provider.strip():
        raise ValueError("Credential key cannot be empty")


class SecretCache:
    """Read-through, write-through cache over the OS credential store.

    The backing store is always updated before the cache, and the cache lock
    is only held while touching the dictionary, never during keyring I/O.
    """

    def __init__(self, service_name: str = SERVICE_NAME, backend: Any = keyring):
        """
        Args:
            service_name: Keyring service the secrets are filed under
            backend: Object exposing keyring's get/set/delete_password API
        """
        self.service_name = service_name
        self._backend = backend
        self._cache: dict[str, str] = {}
        self._lock = threading.Lock()

    def store(self, provider: str, secret: str) -> None:
        """Store a secret for ``provider``.

        Raises:
            CredentialStorageError: If the credential store rejects the write
            ValueError: If provider or secret is empty
        """
        _require_key(provider)
        if not secret or not secret.strip():
            raise ValueError("Credential value cannot be empty")

        try:
            self._backend.set_password(self.service_name, provider, secret)
        except KeyringError as e:
            logger.error(f"Failed to store credential {provider}: {e}")
            raise CredentialStorageError(f"Failed to store credential: {e}") from e
        except Exception as e:
            # Catch unexpected errors (e.g., backend initialization issues)
            logger.error(f"Unexpected error storing credential {provider}: {e}")
            raise CredentialStorageError(f"Unexpected error storing credential: {e}") from e

        with self._lock:
            self._cache[provider] = secret
        logger.debug(f"Stored credential for provider '{provider}'")

    def fetch(self, provider: str) -> str | None:
        """Return the secret for ``provider``, or None if unavailable.

        Failures of the credential store are logged and reported as a
        missing secret.
        """
        _require_key(provider)

        with self._lock:
            cached = self._cache.get(provider)
        if cached is not None:
            return cached

        try:
            value = self._backend.get_password(self.service_name, provider)
        except Exception as e:
            logger.warning(f"Failed to read credential for provider '{provider}': {e}")
            return None

        if not value:
            logger.debug(f"No credential found for: {provider}")
            return None

        with self._lock:
            # A concurrent store() wins over what we just read
            value = self._cache.setdefault(provider, value)
        logger.debug(f"Retrieved credential: {provider}")
        return value

    def delete(self, provider: str) -> None:
        """Delete the secret for ``provider`` from the store and the cache.

        Raises:
            CredentialStorageError: If deletion fails
            ValueError: If provider is empty
        """
        _require_key(provider)

        try:
            self._backend.delete_password(self.service_name, provider)
        except PasswordDeleteError:
            # Credential doesn't exist - not an error
            logger.debug(f"No credential to delete: {provider}")
        except KeyringError as e:
            logger.error(f"Failed to delete credential {provider}: {e}")
            raise CredentialStorageError(f"Failed to delete credential: {e}") from e
        except Exception as e:
            logger.error(f"Unexpected error deleting credential {provider}: {e}")
            raise CredentialStorageError(f"Unexpected error deleting credential: {e}") from e

        with self._lock:
            self._cache.pop(provider, None)
        logger.debug(f"Deleted credential for provider '{provider}'")

    def is_stored(self, provider: str) -> bool:
        """Check if a credential exists for ``provider``."""
        try:
            return self.fetch(provider) is not None
        except ValueError:
            return False

    def migrate_from_plaintext(self, provider: str, plaintext_value: str | None) -> bool:
        """Move a plaintext credential into secure storage.

        Returns:
            True if migration succeeded, False otherwise
        """
        if not plaintext_value or not plaintext_value.strip():
            logger.debug(f"No plaintext value to migrate for {provider}")
            return False

        try:
            self.store(provider, plaintext_value.strip())
            logger.info(f"Migrated plaintext credential to secure storage: {provider}")
            return True
        except (CredentialStorageError, ValueError) as e:
            logger.warning(f"Failed to migrate credential {provider}: {e}")
            return False


def mask_api_key(api_key: str | None) -> str:
    """Render a short preview of a key, e.g. ``dg_1…9f2c``."""
    if not api_key or not api_key.strip():
        return "Not set"
    key = api_key.strip()
    if len(key) <= 8:
        return "*" * len(key)
    return f"{key[:4]}…{key[-4:]}"
