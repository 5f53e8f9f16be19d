"""Durable key/value storage shared by every series."""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = Path(".cache") / "trends.sqlite"
DATA_PREFIX = "trend_data_"
CONFIG_PREFIX = "trend_config_"
IDENTITY_PREFIX = "trend_component_id_"
QUERIES_KEY = "dataQueries"
DATA_SOURCES_KEY = "dataSources"
SERIES_KEY = "realTimeTrends"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def data_key(series_key: str) -> str:
    return f"{DATA_PREFIX}{series_key}"


def config_key(series_key: str) -> str:
    return f"{CONFIG_PREFIX}{series_key}"


def identity_key(title: str) -> str:
    return f"{IDENTITY_PREFIX}{title}"


class KeyValueStore(ABC):
    """Minimal string store; ``put`` raises :class:`PersistenceError` when full."""

    def __init__(self, quota_bytes: Optional[int] = None) -> None:
        self.quota_bytes = quota_bytes

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value or ``None``."""

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete ``key``; removing a missing key is a no-op."""

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        """Return the stored keys starting with ``prefix``."""

    def _check_quota(self, used_elsewhere: int, key: str, value: str) -> None:
        if self.quota_bytes is None:
            return
        needed = used_elsewhere + len(key) + len(value)
        if needed > self.quota_bytes:
            raise PersistenceError(
                f"Storage quota exceeded writing '{key}': {needed} > {self.quota_bytes} bytes"
            )


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store, used for tests and throwaway sessions."""

    def __init__(self, quota_bytes: Optional[int] = None) -> None:
        super().__init__(quota_bytes)
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            used = sum(len(k) + len(v) for k, v in self._data.items() if k != key)
            self._check_quota(used, key, value)
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


class SQLiteKeyValueStore(KeyValueStore):
    """A tiny sqlite table holding JSON documents by key."""

    def __init__(self, path: Optional[Path | str] = None, quota_bytes: Optional[int] = None) -> None:
        super().__init__(quota_bytes)
        self.path = Path(path) if path else DEFAULT_STORE_PATH
        if self.path != Path(":memory:"):
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._ensure_schema()

    @classmethod
    def default(cls) -> "SQLiteKeyValueStore":
        return cls(DEFAULT_STORE_PATH)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_SCHEMA)
            conn.commit()

    def get(self, key: str) -> Optional[str]:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT value FROM kv_store WHERE key=?", (key,)).fetchone()
        return row[0] if row else None

    def put(self, key: str, value: str) -> None:
        with self._lock, self._connect() as conn:
            if self.quota_bytes is not None:
                row = conn.execute(
                    "SELECT COALESCE(SUM(LENGTH(key) + LENGTH(value)), 0) FROM kv_store WHERE key<>?",
                    (key,),
                ).fetchone()
                self._check_quota(int(row[0]), key, value)
            try:
                conn.execute("REPLACE INTO kv_store (key, value) VALUES (?, ?)", (key, value))
                conn.commit()
            except sqlite3.OperationalError as exc:
                raise PersistenceError(f"sqlite write failed for '{key}': {exc}") from exc

    def remove(self, key: str) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM kv_store WHERE key=?", (key,))
            conn.commit()

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT key FROM kv_store WHERE substr(key, 1, ?)=? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        return [row[0] for row in rows]


class PersistenceGateway:
    """JSON view over a :class:`KeyValueStore` with read-back verification."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def get_json(self, key: str) -> Any:
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable JSON stored under '%s'", key)
            return None

    def put_json(self, key: str, payload: Any, *, verify: bool = True) -> int:
        """Serialise and store ``payload``; returns the number of bytes written."""
        text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        self.store.put(key, text)
        if verify and self.store.get(key) != text:
            raise PersistenceError(f"Read-back verification failed for '{key}'")
        logger.debug("Stored %d bytes under '%s'", len(text), key)
        return len(text)

    def get_text(self, key: str) -> Optional[str]:
        return self.store.get(key)

    def put_text(self, key: str, value: str) -> None:
        self.store.put(key, value)

    def remove(self, key: str) -> None:
        self.store.remove(key)

    def keys(self, prefix: str = "") -> List[str]:
        return self.store.keys(prefix)
