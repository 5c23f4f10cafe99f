"""Fingerprint cache: lazy-expiring lookup/store over a pluggable KV store.

The cache is not transactional. A partially written entry fails validation
on read and is treated as a miss, the same as an expired entry or a store
outage. Failures here never fail a request; they only cost a recomputation.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from pydantic import ValidationError

from docvision.cache.models import CacheEntry, ImageFingerprint
from docvision.core.config import CacheSettings
from docvision.core.store import CacheStore, MemoryStore

logger = logging.getLogger(__name__)

_STAT_NAMES = ("hits", "misses", "expired", "corrupt", "store_errors", "writes", "waits")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FingerprintCache:
    def __init__(
        self,
        store: CacheStore | None = None,
        settings: CacheSettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.settings = settings or CacheSettings()
        self.store_backend = store if store is not None else MemoryStore(self.settings.max_entries)
        self._clock = clock
        self._stats = dict.fromkeys(_STAT_NAMES, 0)
        self._stats_lock = threading.Lock()
        self._inflight: dict[str, threading.Event] = {}
        self._inflight_lock = threading.Lock()

    # ── Lookup / Store ───────────────────────────────────────────────

    def lookup(self, fingerprint: ImageFingerprint) -> Optional[CacheEntry]:
        """Cached entry for a fingerprint, or None on miss, expiry or store failure."""
        key = fingerprint.key
        try:
            raw = self.store_backend.get(key)
        except Exception as exc:
            logger.warning("Cache read failed for %s, treating as miss: %s", key, exc)
            self._bump("store_errors")
            self._bump("misses")
            return None

        if raw is None:
            self._bump("misses")
            return None

        try:
            entry = CacheEntry.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Discarding incomplete cache entry %s (%d errors)", key, exc.error_count())
            self._bump("corrupt")
            self._bump("misses")
            return None

        if entry.key != key:
            logger.warning("Cache entry under %s belongs to %s, ignoring", key, entry.key)
            self._bump("corrupt")
            self._bump("misses")
            return None

        if entry.is_expired(self._clock()):
            self._bump("expired")
            self._bump("misses")
            return None

        self._bump("hits")
        return entry

    def store(
        self,
        fingerprint: ImageFingerprint,
        entry: CacheEntry,
        ttl_seconds: int | None = None,
    ) -> bool:
        """Write an entry. Returns False (and logs) if the store failed."""
        ttl = ttl_seconds or entry.ttl_seconds or self.settings.ttl_seconds
        try:
            self.store_backend.put(fingerprint.key, entry.model_dump_json(), ttl)
        except Exception as exc:
            logger.warning("Cache write failed for %s: %s", fingerprint.key, exc)
            self._bump("store_errors")
            return False
        self._bump("writes")
        return True

    def new_entry(self, fingerprint: ImageFingerprint, **fields) -> CacheEntry:
        """Build an entry stamped with this cache's clock and TTL."""
        fields.setdefault("stored_at", self._clock())
        fields.setdefault("ttl_seconds", self.settings.ttl_seconds)
        return CacheEntry(key=fingerprint.key, **fields)

    # ── In-flight Deduplication ──────────────────────────────────────

    @contextmanager
    def claim(self, fingerprint: ImageFingerprint) -> Iterator[bool]:
        """Claim a fingerprint for computation.

        Yields True to the first caller. Later callers block until the owner
        releases the claim (or ``inflight_wait_seconds`` passes) and get False,
        after which they should look the entry up again before computing.
        """
        key = fingerprint.key
        with self._inflight_lock:
            event = self._inflight.get(key)
            owner = event is None
            if owner:
                event = threading.Event()
                self._inflight[key] = event

        if not owner:
            self._bump("waits")
            if not event.wait(self.settings.inflight_wait_seconds):
                logger.info("Gave up waiting on in-flight %s, computing independently", key)
            yield False
            return

        try:
            yield True
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)
            event.set()

    # ── Stats ────────────────────────────────────────────────────────

    def stats(self) -> dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)

    def _bump(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1
