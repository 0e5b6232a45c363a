"""
TTL-based in-memory cache.

Used by the knowledge store to avoid re-reading unchanged reference
documents on every run. Entries expire after a per-entry TTL (the cache's
default unless ``put`` overrides it).

One instance is shared by every run served by the process, and the API runs
triage in FastAPI's threadpool, so all access to the store holds a lock.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Generic, TypeVar

from inboxq.observability.telemetry import counter, log_event

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    expires_at: float


class TTLCache(Generic[T]):
    """Thread-safe TTL cache keyed by string."""

    def __init__(
        self,
        name: str,
        ttl_seconds: float = 1800.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            name: Cache name for telemetry (e.g., "knowledge")
            ttl_seconds: Default time-to-live for entries (default 30 minutes)
            clock: Time source, injectable for tests
        """
        self.name = name
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._store: dict[str, CacheEntry[T]] = {}
        self._lock = Lock()

    def get(self, key: str) -> T | None:
        """Return the cached value, or None when absent or expired (expired entries are dropped)."""
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is not None and now >= entry.expires_at:
                self._store.pop(key, None)
                expired = True
            else:
                expired = False

        if entry is None:
            counter(f"cache.{self.name}.miss")
            return None
        if expired:
            counter(f"cache.{self.name}.expired")
            log_event("cache.expired", cache=self.name, key_hash=self._hash_key(key))
            return None

        counter(f"cache.{self.name}.hit")
        return entry.value

    def put(self, key: str, value: T, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        entry = CacheEntry(value=value, expires_at=self._clock() + ttl)
        with self._lock:
            self._store[key] = entry
        counter(f"cache.{self.name}.write")

    def invalidate(self, key: str) -> None:
        with self._lock:
            removed = self._store.pop(key, None)
        if removed is not None:
            counter(f"cache.{self.name}.invalidate")

    def clear(self) -> None:
        with self._lock:
            count = len(self._store)
            self._store.clear()
        log_event("cache.cleared", cache=self.name, count=count)

    def _hash_key(self, key: str) -> str:
        """First 12 chars of the key, safe to log."""
        return key[:12]
