"""
Process-local TTL cache with prefix invalidation.

Single-process and best-effort: no locking, no cross-worker consistency.
Expired entries are removed lazily on the next get(); nothing sweeps
proactively.
"""
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class CacheBackend(ABC):
    """Interface the assignment service reads and invalidates through."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    def delete_pattern(self, prefix: str) -> int:
        ...


class TTLCache(CacheBackend):
    """
    In-memory key -> (value, expiry) store.

    Guarantees:
    - get() never returns a value past its expiry
    - set() overwrites any existing entry and its expiry
    - delete_pattern() removes every key starting with the prefix

    Args:
        clock: returns the current time in seconds; tests inject a fake
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        value, expires_at = entry
        if self._clock() > expires_at:
            del self._entries[key]
            self._misses += 1
            return None

        self._hits += 1
        return value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries[key] = (value, self._clock() + ttl_seconds)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_pattern(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cache entries with prefix {prefix!r}")
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, int]:
        return {
            "size": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
        }

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)


# Process-wide default; services accept an injected backend instead
_default_cache = TTLCache()


def get_cache() -> TTLCache:
    """Dependency returning the process cache"""
    return _default_cache
