"""Key-value cache stores with TTL: in-memory and SQLite-backed."""

import logging
import sqlite3
import threading
import time
from collections import OrderedDict
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Protocol

from docvision.core.errors import CacheStoreError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class CacheStore(Protocol):
    """Anything with TTL-aware get/put satisfies the cache."""

    def get(self, key: str) -> Optional[str]: ...

    def put(self, key: str, value: str, ttl_seconds: int) -> None: ...


# ── MemoryStore ──────────────────────────────────────────────────────


class MemoryStore:
    """Process-local store. Evicts least-recently-inserted entries past capacity."""

    def __init__(self, max_entries: int = 10_000, clock: Clock = time.time):
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.max_entries = max_entries
        self._clock = clock
        self._data: OrderedDict[str, tuple[str, float]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at <= self._clock():
                del self._data[key]
                return None
            return value

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            # Re-inserting moves the key to the newest position
            self._data.pop(key, None)
            self._data[key] = (value, self._clock() + ttl_seconds)
            while len(self._data) > self.max_entries:
                evicted, _ = self._data.popitem(last=False)
                logger.debug("Evicted cache key %s (capacity %d)", evicted, self.max_entries)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


# ── SqliteStore ──────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,      -- JSON-encoded CacheEntry
    stored_at   TEXT NOT NULL,
    expires_at  REAL NOT NULL       -- unix epoch seconds
);

CREATE INDEX IF NOT EXISTS idx_cache_expires ON cache_entries(expires_at);
"""


class SqliteStore:
    """SQLite-backed store shared across processes on one host."""

    def __init__(self, db_path: str | Path, clock: Clock = time.time):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._clock = clock
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def get(self, key: str) -> Optional[str]:
        now = self._clock()
        with self._lock:
            try:
                row = self._conn.execute(
                    "SELECT value, expires_at FROM cache_entries WHERE key = ?", (key,)
                ).fetchone()
                if row is None:
                    return None
                if row["expires_at"] <= now:
                    self._conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
                    self._conn.commit()
                    return None
            except sqlite3.Error as exc:
                raise CacheStoreError(f"Cache read failed for {key}: {exc}") from exc
        return row["value"]

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        expires_at = self._clock() + ttl_seconds
        with self._lock:
            try:
                self._conn.execute(
                    """INSERT OR REPLACE INTO cache_entries
                       (key, value, stored_at, expires_at)
                       VALUES (?, ?, ?, ?)""",
                    (key, value, _now(), expires_at),
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                raise CacheStoreError(f"Cache write failed for {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
            self._conn.commit()

    def purge_expired(self) -> int:
        """Delete every expired row. Returns the number removed."""
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM cache_entries WHERE expires_at <= ?", (self._clock(),)
            )
            self._conn.commit()
        if cur.rowcount:
            logger.info("Purged %d expired cache entries", cur.rowcount)
        return cur.rowcount

    def count(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM cache_entries").fetchone()[0]

    # ── Cleanup ──────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()


# ── Helpers ──────────────────────────────────────────────────────────


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
