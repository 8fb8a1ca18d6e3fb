"""In-process cache with per-entry TTL, LRU eviction, and usage statistics."""

import asyncio
import contextlib
import logging
import math
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from fnmatch import fnmatchcase
from numbers import Real

from telecache.cache.errors import InvalidArgumentError
from telecache.models.cache import CacheStats

logger = logging.getLogger(__name__)


def validate_key(key: object) -> None:
    """Raise ``InvalidArgumentError`` unless *key* is a non-empty string."""
    if not isinstance(key, str) or not key:
        raise InvalidArgumentError(f"Cache key must be a non-empty string, got {key!r}")


def validate_seconds(value: object, field: str) -> None:
    """Raise ``InvalidArgumentError`` unless *value* is a non-negative number."""
    if (
        isinstance(value, bool)
        or not isinstance(value, Real)
        or math.isnan(value)
        or value < 0
    ):
        raise InvalidArgumentError(f"{field} must be a non-negative number, got {value!r}")


class CacheEntry:
    """One cached value with its bookkeeping timestamps."""

    __slots__ = ("key", "value", "created_at", "last_accessed_at", "expires_at", "hit_count")

    def __init__(
        self, key: str, value: object, now: float, expires_at: float | None
    ) -> None:
        self.key = key
        self.value = value
        self.created_at = now
        self.last_accessed_at = now
        self.expires_at = expires_at
        self.hit_count = 0

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class CacheEngine:
    """Bounded key/value store with TTL expiry and least-recently-used eviction.

    The backing ``OrderedDict`` is kept in ``last_accessed_at`` order: every hit
    and every ``set`` moves the key to the end, so the first key is always the
    least recently used one.

    Args:
        max_size: Maximum number of live entries.
        default_ttl_seconds: TTL applied when ``set`` gets no explicit TTL
            (0 means no expiry).
        sweep_interval_seconds: Period of the background expiry sweep
            (0 disables the sweeper).
        name: Label used in logs and statistics.
        clock: Monotonic time source in seconds.

    Raises:
        InvalidArgumentError: On a non-positive ``max_size`` or negative durations.
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl_seconds: float = 0,
        sweep_interval_seconds: float = 60,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if isinstance(max_size, bool) or not isinstance(max_size, int) or max_size < 1:
            raise InvalidArgumentError(f"max_size must be a positive integer, got {max_size!r}")
        validate_seconds(default_ttl_seconds, "default_ttl_seconds")
        validate_seconds(sweep_interval_seconds, "sweep_interval_seconds")

        self.name = name
        self.max_size = max_size
        self.default_ttl_seconds = default_ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock

        self._store: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._evictions = 0
        self._sweeper: asyncio.Task | None = None

    # ── Core operations ──────────────────────────────────────────────────────

    def set(self, key: str, value: object, ttl_seconds: float | None = None) -> object:
        """Store *value* under *key*, replacing any existing entry.

        A new key inserted at capacity first evicts the least recently
        accessed entry.

        Args:
            key: Non-empty cache key.
            value: Any value; the engine never inspects it.
            ttl_seconds: Lifetime in seconds. ``None`` uses the instance
                default, 0 means no expiry.

        Returns:
            The stored value.
        """
        validate_key(key)
        if ttl_seconds is None:
            ttl_seconds = self.default_ttl_seconds
        else:
            validate_seconds(ttl_seconds, "ttl_seconds")

        with self._lock:
            now = self._clock()
            expires_at = now + ttl_seconds if ttl_seconds > 0 else None
            if key in self._store:
                self._store.move_to_end(key)
            elif len(self._store) >= self.max_size:
                self._evict_lru()
            self._store[key] = CacheEntry(key, value, now, expires_at)
            self._sets += 1
        return value

    def get(self, key: str, default: object = None) -> object:
        """Return the live value for *key*, or *default* on a miss.

        A hit refreshes the entry's recency; an expired entry is removed.
        """
        validate_key(key)
        with self._lock:
            now = self._clock()
            entry = self._store.get(key)
            if entry is not None and entry.is_expired(now):
                del self._store[key]
                entry = None

            if entry is None:
                self._misses += 1
                logger.debug("Cache miss [%s]: %s", self.name, key)
                return default

            entry.last_accessed_at = now
            entry.hit_count += 1
            self._store.move_to_end(key)
            self._hits += 1
            logger.debug("Cache hit [%s]: %s", self.name, key)
            return entry.value

    def has(self, key: str) -> bool:
        """Return True if *key* holds a live entry. No stats or recency effect."""
        validate_key(key)
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._store[key]
                return False
            return True

    def delete(self, key: str) -> bool:
        """Remove *key*. Returns True if it was present."""
        validate_key(key)
        with self._lock:
            return self._store.pop(key, None) is not None

    def delete_matching(self, pattern: str) -> int:
        """Remove every key matching the wildcard *pattern* (``*``, ``?``).

        Returns:
            Number of entries removed.
        """
        if not isinstance(pattern, str) or not pattern:
            raise InvalidArgumentError(f"Pattern must be a non-empty string, got {pattern!r}")
        with self._lock:
            doomed = [k for k in self._store if fnmatchcase(k, pattern)]
            for k in doomed:
                del self._store[k]
        if doomed:
            logger.debug("Invalidated %d entries in '%s' matching %s", len(doomed), self.name, pattern)
        return len(doomed)

    def keys(self) -> list[str]:
        """Live keys, least recently used first."""
        with self._lock:
            now = self._clock()
            return [k for k, e in self._store.items() if not e.is_expired(now)]

    def clear(self) -> None:
        """Remove all entries and reset every counter."""
        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0
            self._sets = 0
            self._evictions = 0
        logger.info("Cache '%s' cleared", self.name)

    def get_stats(self) -> CacheStats:
        """Snapshot of the counters with derived size and hit rate."""
        with self._lock:
            lookups = self._hits + self._misses
            return CacheStats(
                name=self.name,
                hits=self._hits,
                misses=self._misses,
                sets=self._sets,
                evictions=self._evictions,
                size=len(self._store),
                max_size=self.max_size,
                hit_rate=self._hits / lookups if lookups else 0.0,
            )

    def now(self) -> float:
        """Current reading of the engine clock."""
        return self._clock()

    @property
    def size(self) -> int:
        """Current number of stored entries."""
        return len(self._store)

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and bool(key) and self.has(key)

    # ── Eviction & expiry ────────────────────────────────────────────────────

    def _evict_lru(self) -> None:
        key, _ = self._store.popitem(last=False)
        self._evictions += 1
        logger.debug("Evicted least recently used key from '%s': %s", self.name, key)

    def sweep(self) -> int:
        """Delete every expired entry.

        Returns:
            Number of entries removed (also added to ``evictions``).
        """
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._store.items() if e.is_expired(now)]
            for k in expired:
                del self._store[k]
            self._evictions += len(expired)
        if expired:
            logger.debug("Cache sweep [%s]: removed %d expired entries", self.name, len(expired))
        return len(expired)

    def start_sweeper(self) -> asyncio.Task | None:
        """Schedule the periodic sweep on the running event loop.

        Returns:
            The sweeper task, or None when the sweep interval is 0.
        """
        if self.sweep_interval_seconds <= 0:
            return None
        if self._sweeper is not None and not self._sweeper.done():
            return self._sweeper
        self._sweeper = asyncio.get_running_loop().create_task(
            self._run_sweeper(), name=f"cache-sweeper-{self.name}"
        )
        return self._sweeper

    async def stop_sweeper(self) -> None:
        """Cancel the sweeper task, if running, and wait for it to finish."""
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def _run_sweeper(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.sweep()
            except Exception:  # noqa: BLE001
                logger.exception("Cache sweep failed for '%s'", self.name)
