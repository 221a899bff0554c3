"""
Token Store for the OIDC session manager.

This module provides a standardized interface for persisting the single
refresh token that outlives the process, using a local JSON file with
owner-only permissions.
"""

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Dict, Optional

from ..utils.errors import StorageFailure

logger = logging.getLogger(__name__)


class TokenStore(ABC):
    """Abstract base class for secure token storage.

    Implementations raise StorageFailure on any read, write or delete error.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Get the value stored under key, or None if the slot is empty."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a value under key, replacing any previous value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Empty the slot for key. Deleting an empty slot is not an error."""
        pass


class MemoryTokenStore(TokenStore):
    """Token store kept in process memory. Nothing survives a restart."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)


class LocalFileTokenStore(TokenStore):
    """Token store backed by a JSON file readable only by the current user."""

    FILENAME = "tokens.json"

    def __init__(self, base_dir: Optional[str] = None) -> None:
        """
        Initialize the local token store.

        Args:
            base_dir: Directory for the token file. If None, uses
                     $OIDC_SESSION_CREDENTIALS_DIR or ~/.oidc-session
        """
        if base_dir is None:
            base_dir = os.path.expanduser(
                os.getenv("OIDC_SESSION_CREDENTIALS_DIR", "~/.oidc-session")
            )

        self.base_dir = base_dir
        self.path = os.path.join(base_dir, self.FILENAME)
        logger.info(f"LocalFileTokenStore initialized: {self.path}")

    def _ensure_dir_exists(self) -> None:
        """Ensure the token directory exists."""
        if not os.path.exists(self.base_dir):
            os.makedirs(self.base_dir, mode=0o700, exist_ok=True)
            logger.info(f"Created token directory: {self.base_dir}")

    def _read_all(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("Invalid token file format")
        return data

    def _write_all(self, data: Dict[str, str]) -> None:
        """Write the token file atomically with 0600 permissions."""
        self._ensure_dir_exists()
        fd, temp_path = tempfile.mkstemp(dir=self.base_dir, suffix=".tmp")
        try:
            os.chmod(temp_path, 0o600)
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(temp_path, self.path)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    def _get_sync(self, key: str) -> Optional[str]:
        try:
            value = self._read_all().get(key)
        except (OSError, ValueError) as e:
            raise StorageFailure(f"Could not read token '{key}': {e}", "get") from e
        if value is None:
            logger.debug(f"No stored value for '{key}'")
        return value

    def _set_sync(self, key: str, value: str) -> None:
        try:
            data = self._read_all()
            data[key] = value
            self._write_all(data)
        except (OSError, ValueError) as e:
            raise StorageFailure(f"Could not store token '{key}': {e}", "set") from e
        logger.debug(f"Stored value for '{key}'")

    def _delete_sync(self, key: str) -> None:
        try:
            data = self._read_all()
            if key not in data:
                return
            del data[key]
            if data:
                self._write_all(data)
            else:
                os.remove(self.path)
        except (OSError, ValueError) as e:
            raise StorageFailure(f"Could not delete token '{key}': {e}", "delete") from e
        logger.info(f"Deleted stored value for '{key}'")

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set_sync, key, value)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)
