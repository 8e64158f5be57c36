"""
In-memory caching layer for resolved poster images.
Process-lifetime memo keyed by upstream id; a cached None records a lookup
that found nothing.
"""
import logging
from collections import OrderedDict
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Distinguishes "not cached" from a cached None
MISSING = object()


class PosterCache:
    """
    Append-only key/value memo for poster URLs.

    Concurrent lookups for the same key may both miss and both store; the
    last write wins, which is fine since both compute the same value. When
    max_size is set the oldest entries are evicted first.
    """

    def __init__(self, max_size: Optional[int] = None):
        self.max_size = max_size
        self._entries: OrderedDict[str, Optional[str]] = OrderedDict()

    def get(self, key: str, default: Any = MISSING) -> Any:
        """Cached value for key, or default when absent."""
        return self._entries.get(key, default)

    def set(self, key: str, value: Optional[str]):
        """Store value for key."""
        self._entries[key] = value
        if self.max_size is not None:
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Poster cache full, evicted {evicted}")

    def __len__(self) -> int:
        return len(self._entries)


# Singleton instance
_poster_cache: Optional[PosterCache] = None


def get_poster_cache() -> PosterCache:
    """Get or create poster cache singleton."""
    global _poster_cache
    if _poster_cache is None:
        _poster_cache = PosterCache()
    return _poster_cache
