"""
JSON file key-value store.

One ``<key>.json`` file per key under the data directory, with an
in-memory read cache. Reads fall back to the default and writes report
failure instead of raising, so persistence problems never stop trading.
"""

import json
import os
import threading
from pathlib import Path
from typing import Any

import structlog

from ..engine.exceptions import PersistenceError

logger = structlog.get_logger(__name__)


class JsonStore:
    """File-backed store used for engine state."""

    def __init__(self, data_dir: str = "data"):
        """
        Initialize the store.

        Args:
            data_dir: Directory holding one JSON file per key
        """
        self.data_dir = Path(data_dir)
        self._cache = {}
        self._lock = threading.Lock()

    def init(self) -> None:
        """
        Create the data directory.

        Raises:
            PersistenceError: If the directory cannot be created
        """
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Failed to initialize storage", data_dir=str(self.data_dir), error=str(e))
            raise PersistenceError(f"Cannot create data directory {self.data_dir}: {e}") from e

        logger.info("Storage initialized", data_dir=str(self.data_dir))

    def _path(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def get(self, key: str, default: Any = None) -> Any:
        """
        Read a value.

        Returns:
            The stored value, or ``default`` if absent or unreadable
        """
        with self._lock:
            if key in self._cache:
                return self._cache[key]

        path = self._path(key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                value = json.load(f)
        except FileNotFoundError:
            return default
        except (OSError, ValueError) as e:
            logger.error("Failed to read stored value", key=key, error=str(e))
            return default

        with self._lock:
            self._cache[key] = value
        return value

    def set(self, key: str, value: Any) -> bool:
        """
        Write a value atomically (temporary file then rename).

        Returns:
            True on success
        """
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(value, f, indent=2)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write stored value", key=key, error=str(e))
            return False

        with self._lock:
            self._cache[key] = value
        return True

    def delete(self, key: str) -> bool:
        """
        Remove a value.

        Returns:
            True if a file was removed
        """
        with self._lock:
            self._cache.pop(key, None)

        try:
            self._path(key).unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error("Failed to delete stored value", key=key, error=str(e))
            return False
        return True

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
