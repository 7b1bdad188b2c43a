"""
In-memory TTL cache for collected evidence.

One ``ResultCache`` is owned by each engine (and therefore by each MCP
session), so two sessions never share memoized device evidence. Expired
entries are evicted lazily on access and on ``set``.
"""
import time
import logging
import threading

from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger("DevSec")

DEFAULT_TTL_SECONDS = 30
DEFAULT_MAX_ENTRIES = 256


class ResultCache:
    """Thread-safe TTL memoization keyed by any hashable value."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic,
                 max_entries: int = DEFAULT_MAX_ENTRIES):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._lock = threading.Lock()
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._clock = clock
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    #  Core operations
    # ------------------------------------------------------------------

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or ``None`` on miss or expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                self._misses += 1
                logger.debug("Result cache entry expired: %s", key)
                return None
            self._hits += 1
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._evict_expired()
            if key not in self._entries and len(self._entries) >= self.max_entries:
                oldest = min(self._entries, key=lambda k: self._entries[k][0])
                del self._entries[oldest]
            self._entries[key] = (self._clock(), value)

    def invalidate(self, key: Hashable) -> bool:
        """Drop one entry. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Drop every entry. Returns the number removed."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            self._evict_expired()
            return {
                "entry_count": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
            }

    def _evict_expired(self) -> None:
        """Must be called while ``_lock`` is held."""
        now = self._clock()
        expired = [k for k, (stored_at, _) in self._entries.items()
                   if now - stored_at >= self.ttl_seconds]
        for k in expired:
            del self._entries[k]
