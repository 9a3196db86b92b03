"""
Session storage backends for the Auth Session client.

This module provides the storage port implementations: a process-local
memory store, and a secure persistent store that uses the system keyring
when available and falls back to an encrypted file.
"""

import os
import json
import asyncio
import logging
from pathlib import Path
from typing import Optional, Dict

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from cryptography.fernet import Fernet, InvalidToken

from session_shared.exceptions import ErrorCode, StorageError
from session_shared.interfaces import IStorage

logger = logging.getLogger(__name__)


class MemoryStorage(IStorage):
    """
    In-memory session storage.

    Suitable for tests, short-lived processes and embedders that handle
    persistence elsewhere.
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value

    async def remove(self, key: str) -> None:
        self._values.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        """Copy of the stored values, for inspection."""
        return dict(self._values)


class SecureStorage(IStorage):
    """
    Secure persistent session storage.

    Uses the system keyring when available, falls back to a Fernet-encrypted
    JSON file in the user's config directory. Keyring, file and encryption
    work runs off the event loop. Backend failures surface as StorageError.
    """

    def __init__(
        self,
        service_name: str = "auth-session-client",
        storage_dir: Optional[Path] = None,
        use_keyring: Optional[bool] = None
    ):
        self.service_name = service_name
        if use_keyring is False:
            self.keyring_available = False
        else:
            self.keyring_available = self._check_keyring_availability()

        storage_dir = storage_dir or self._get_default_storage_dir()
        self.storage_path = storage_dir / 'session.enc'
        self.key_path = storage_dir / 'session.key'

        self._encryption_key: Optional[bytes] = None
        # Blocking backend calls run in worker threads; the file is read-modify-write
        self._lock = asyncio.Lock()

        logger.info(f"Session storage initialized (keyring: {self.keyring_available})")

    def _check_keyring_availability(self) -> bool:
        """Check if system keyring is available."""
        try:
            test_key = f"{self.service_name}_test"
            keyring.set_password(self.service_name, test_key, "test")
            result = keyring.get_password(self.service_name, test_key)
            keyring.delete_password(self.service_name, test_key)
            return result == "test"
        except Exception as e:
            logger.debug(f"Keyring not available: {e}")
            return False

    def _get_default_storage_dir(self) -> Path:
        """Get directory for encrypted file storage."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            return Path(xdg_config) / 'auth-session'
        return Path.home() / '.config' / 'auth-session'

    def _get_encryption_key(self) -> bytes:
        """Get or create encryption key for file storage."""
        if self._encryption_key:
            return self._encryption_key

        if self.keyring_available:
            stored_key = keyring.get_password(self.service_name, "encryption_key")
            if stored_key:
                self._encryption_key = stored_key.encode()
                return self._encryption_key
        elif self.key_path.exists():
            self._encryption_key = self.key_path.read_bytes().strip()
            return self._encryption_key

        key = Fernet.generate_key()

        if self.keyring_available:
            keyring.set_password(self.service_name, "encryption_key", key.decode())
        else:
            self.key_path.parent.mkdir(parents=True, exist_ok=True)
            self.key_path.write_bytes(key)
            os.chmod(self.key_path, 0o600)

        self._encryption_key = key
        return key

    def _read_file(self) -> Dict[str, str]:
        if not self.storage_path.exists():
            return {}

        fernet = Fernet(self._get_encryption_key())
        try:
            decrypted = fernet.decrypt(self.storage_path.read_bytes()).decode()
        except InvalidToken as e:
            raise StorageError(
                "Session file cannot be decrypted",
                ErrorCode.STORAGE_CORRUPTED_RECORD,
                context={'path': str(self.storage_path)},
                cause=e
            ) from e
        return json.loads(decrypted)

    def _write_file(self, values: Dict[str, str]) -> None:
        if not values:
            if self.storage_path.exists():
                self.storage_path.unlink()
            return

        fernet = Fernet(self._get_encryption_key())
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self.storage_path.write_bytes(fernet.encrypt(json.dumps(values).encode()))
        os.chmod(self.storage_path, 0o600)

    def _get_value(self, key: str) -> Optional[str]:
        if self.keyring_available:
            return keyring.get_password(self.service_name, key)
        return self._read_file().get(key)

    def _set_value(self, key: str, value: str) -> None:
        if self.keyring_available:
            keyring.set_password(self.service_name, key, value)
            return
        values = self._read_file()
        values[key] = value
        self._write_file(values)

    def _remove_value(self, key: str) -> None:
        if self.keyring_available:
            try:
                keyring.delete_password(self.service_name, key)
            except PasswordDeleteError:
                pass  # already absent
            return
        values = self._read_file()
        if values.pop(key, None) is not None:
            self._write_file(values)

    async def get(self, key: str) -> Optional[str]:
        try:
            async with self._lock:
                return await asyncio.to_thread(self._get_value, key)
        except StorageError:
            raise
        except (KeyringError, OSError, ValueError) as e:
            logger.error(f"Failed to read session value: {e}")
            raise StorageError(f"Failed to read {key}", ErrorCode.STORAGE_READ_FAILED,
                               key=key, cause=e) from e

    async def set(self, key: str, value: str) -> None:
        try:
            async with self._lock:
                await asyncio.to_thread(self._set_value, key, value)
        except StorageError:
            raise
        except (KeyringError, OSError, ValueError) as e:
            logger.error(f"Failed to store session value: {e}")
            raise StorageError(f"Failed to store {key}", ErrorCode.STORAGE_WRITE_FAILED,
                               key=key, cause=e) from e

    async def remove(self, key: str) -> None:
        try:
            async with self._lock:
                await asyncio.to_thread(self._remove_value, key)
        except StorageError:
            raise
        except (KeyringError, OSError, ValueError) as e:
            logger.error(f"Failed to remove session value: {e}")
            raise StorageError(f"Failed to remove {key}", ErrorCode.STORAGE_REMOVE_FAILED,
                               key=key, cause=e) from e
