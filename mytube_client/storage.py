"""
MyTube Client Storage Implementations

Key-value backends for the two values the client persists (the cached role
hint and a user-configured backend URL), plus the stores that read and write
them. Store writes never raise: they report a ``StorageResult`` so the auth
bootstrap cannot be aborted by a broken disk.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .config import normalize_api_base_url
from .types import KeyValueStorage, Role, normalize_role


logger = logging.getLogger("mytube_client")

ROLE_KEY = "auth.role"
BACKEND_URL_KEY = "config.backendApiUrl"


class MemoryStorage:
    """In-memory key-value storage (default, non-persistent)."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class FileStorage:
    """File-based key-value storage (persistent across restarts)."""

    def __init__(self, file_path: Optional[str] = None) -> None:
        """
        Initialize file storage.

        Args:
            file_path: Path to the JSON file. Defaults to ~/.mytube/client.json
        """
        if file_path:
            self._file_path = Path(file_path)
        else:
            self._file_path = Path.home() / ".mytube" / "client.json"

        self._lock = threading.Lock()
        self._file_path.parent.mkdir(parents=True, exist_ok=True)

    def _read_data(self) -> Dict[str, Any]:
        if not self._file_path.exists():
            return {}
        with open(self._file_path, "r") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError:
                return {}
        return data if isinstance(data, dict) else {}

    def _write_data(self, data: Dict[str, Any]) -> None:
        with open(self._file_path, "w") as f:
            json.dump(data, f)
        # Owner read/write only
        os.chmod(self._file_path, 0o600)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._read_data().get(key)
            return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_data()
            data[key] = value
            self._write_data(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read_data()
            if key in data:
                del data[key]
                self._write_data(data)


@dataclass(frozen=True)
class StorageResult:
    """Outcome of a best-effort storage write."""

    ok: bool
    error: Optional[Exception] = None


class RoleStore:
    """Cached role hint used at cold start."""

    def __init__(self, storage: Optional[KeyValueStorage] = None) -> None:
        self._storage = storage if storage is not None else MemoryStorage()

    def load(self) -> Role:
        try:
            return normalize_role(self._storage.get(ROLE_KEY))
        except Exception as e:
            logger.warning("Failed to read cached role: %s", e)
            return None

    def save(self, role: Role) -> StorageResult:
        """Persist ``role``, deleting the key for None."""
        try:
            if role is None:
                self._storage.delete(ROLE_KEY)
            else:
                self._storage.set(ROLE_KEY, role)
        except Exception as e:
            logger.warning("Failed to persist role %r: %s", role, e)
            return StorageResult(ok=False, error=e)
        return StorageResult(ok=True)


class BackendUrlStore:
    """User-configured backend address; invalid stored values are discarded."""

    def __init__(self, storage: Optional[KeyValueStorage] = None) -> None:
        self._storage = storage if storage is not None else MemoryStorage()

    def load(self) -> Optional[str]:
        try:
            raw = self._storage.get(BACKEND_URL_KEY)
        except Exception as e:
            logger.warning("Failed to read backend URL: %s", e)
            return None
        if raw is None:
            return None
        normalized = normalize_api_base_url(raw)
        if not normalized:
            self._delete()
            return None
        return normalized

    def save(self, url: Optional[str]) -> StorageResult:
        """Persist a normalized URL; None or an invalid URL clears the key."""
        normalized = normalize_api_base_url(url) if url is not None else ""
        if not normalized:
            return self._delete()
        try:
            self._storage.set(BACKEND_URL_KEY, normalized)
        except Exception as e:
            logger.warning("Failed to persist backend URL: %s", e)
            return StorageResult(ok=False, error=e)
        return StorageResult(ok=True)

    def _delete(self) -> StorageResult:
        try:
            self._storage.delete(BACKEND_URL_KEY)
        except Exception as e:
            logger.warning("Failed to clear backend URL: %s", e)
            return StorageResult(ok=False, error=e)
        return StorageResult(ok=True)
