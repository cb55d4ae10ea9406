import copy
import threading
import time
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

V = TypeVar("V")

DEFAULT_TTL_MS = 5 * 60 * 1000


def monotonic_ms() -> int:
    return time.monotonic_ns() // 1_000_000


class CacheEntry(Generic[V]):
    __slots__ = ("data", "stored_at", "ttl")

    def __init__(self, data: V, stored_at: int, ttl: int):
        self.data = data
        self.stored_at = stored_at
        self.ttl = ttl

    def is_expired(self, now: int) -> bool:
        if self.ttl <= 0:
            return True
        return now - self.stored_at > self.ttl


class TTLCache(Generic[V]):
    """Simple TTL-backed key-value cache with per-entry expiration.

    Parameters
    ----------
    default_ttl : int
        Time-to-live in milliseconds used when `set` is called without one.
    clock : Callable[[], int]
        Monotonic clock returning whole milliseconds. Injected in tests.

    Notes
    -----
    - Keys are typed as `str`; values are deep-copied in and out so callers
      never alias what the cache holds.
    - Expiration is lazy (on `get`); there is no background reaper.
    - A non-positive TTL stores an entry that is already expired.
    - Every operation holds an internal lock, so handlers running on worker
      threads can share one instance.
    """

    def __init__(self, default_ttl: int = DEFAULT_TTL_MS, clock: Callable[[], int] = monotonic_ms):
        self.default_ttl = default_ttl
        self._clock = clock
        self._store: Dict[str, CacheEntry[V]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Optional[V]:
        """Return the cached value for `key` if present and not expired.

        Parameters
        ----------
        key : str
            Cache key.

        Returns
        -------
        Optional[V]
            A copy of the stored value, or `None` if the key is missing or the
            entry expired.

        Notes
        -----
        - Performs lazy eviction: if the entry is stale, it is removed and
          `None` is returned.
        """

        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._store[key]
                self._evictions += 1
                self._misses += 1
                return None
            self._hits += 1
            return copy.deepcopy(entry.data)

    def set(self, key: str, value: V, ttl: Optional[int] = None) -> None:
        """Insert or replace a value for `key`, timestamped for TTL accounting.

        Parameters
        ----------
        key : str
            Cache key.
        value : V
            Arbitrary Python object to store. A deep copy is kept.
        ttl : Optional[int]
            Time-to-live in milliseconds. `None` falls back to `default_ttl`.
        """

        if ttl is None:
            ttl = self.default_ttl
        entry = CacheEntry(copy.deepcopy(value), self._clock(), ttl)
        with self._lock:
            self._store[key] = entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        """Remove all entries from the cache.

        Useful for tests or to force a full refresh of cached data.
        """

        with self._lock:
            self._store.clear()

    def invalidate_pattern(self, pattern: str) -> int:
        """Remove every entry whose key contains `pattern` as a substring.

        Returns
        -------
        int
            Number of entries removed.
        """

        with self._lock:
            doomed = [key for key in list(self._store) if pattern in key]
            for key in doomed:
                del self._store[key]
        return len(doomed)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._store[key]
                self._evictions += 1
                return False
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "default_ttl_ms": self.default_ttl,
            }
