"""Response cache for idempotent tool calls.

Entries carry their own time-to-live. Expired entries read as absent and
are purged lazily; when the cache is full, an already-expired entry is
evicted before any live one, and otherwise the least recently used entry
goes.
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from cachetools import LRUCache

DEFAULT_MAX_ENTRIES = 512
DEFAULT_TTL_SECONDS = 300.0


def make_key(method: str, params: dict[str, Any] | None) -> str:
    """Build a deterministic cache key.

    Args:
        method: Tool name.
        params: Canonical (JSON-compatible) arguments.

    Returns:
        ``"<method>:<sha256 of sorted-key JSON>"``.
    """
    payload = json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"{method}:{digest}"


@dataclass(frozen=True)
class CacheEntry:
    """A cached value and its lifetime."""

    key: str
    value: Any
    created_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class ResponseCache:
    """Bounded, thread-safe TTL cache with LRU fallback eviction."""

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            max_entries: Maximum number of entries held at once.
            default_ttl: Lifetime used when put() is given no ttl.
            clock: Monotonic time source (seconds).

        Raises:
            ValueError: If max_entries or default_ttl is not positive.
        """
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")

        self._entries: LRUCache = LRUCache(maxsize=max_entries)
        # key -> expiry time; scanned on eviction without touching LRU order
        self._expiry: dict[str, float] = {}
        self._default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def max_entries(self) -> int:
        return int(self._entries.maxsize)

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired."""
        with self._lock:
            entry: CacheEntry | None = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                self._remove(key)
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value, replacing any existing entry for the key.

        Args:
            key: Cache key from make_key().
            value: Value to store.
            ttl: Lifetime in seconds (defaults to default_ttl).
        """
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            return

        with self._lock:
            now = self._clock()
            if key not in self._entries and len(self._entries) >= self._entries.maxsize:
                self._evict_one(now)
            entry = CacheEntry(key=key, value=value, created_at=now, ttl=ttl)
            self._entries[key] = entry
            self._expiry[key] = entry.expires_at

    def _remove(self, key: str) -> None:
        """Drop an entry and its expiry record. Caller holds the lock."""
        self._entries.pop(key, None)
        self._expiry.pop(key, None)

    def _evict_one(self, now: float) -> None:
        """Make room for one entry. Caller holds the lock."""
        self._evictions += 1
        expired = [
            (expires_at, key) for key, expires_at in self._expiry.items() if now >= expires_at
        ]
        if expired:
            _, victim = min(expired)
            self._remove(victim)
        else:
            victim, _ = self._entries.popitem()
            self._expiry.pop(victim, None)

    def invalidate(self, key: str) -> None:
        """Drop a single entry if present."""
        with self._lock:
            self._remove(key)

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()
            self._expiry.clear()

    def stats(self) -> dict[str, int]:
        """Hit, miss, eviction and size counters."""
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "size": len(self._entries),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            expires_at = self._expiry.get(key)
            return expires_at is not None and self._clock() < expires_at
