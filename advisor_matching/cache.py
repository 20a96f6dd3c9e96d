"""
In-process TTL cache shared by the engine services.

Keys are namespaced strings (``patterns:{match_id}:{window}``,
``recommendations:{industry}:...:{digest}``) so related entries can be dropped with a
single prefix invalidation instead of wiping the whole cache.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

_MISSING = object()


class TTLCache:
    """
    Dictionary cache where every entry carries its own time-to-live.

    - ``clock`` returns seconds and is injectable for tests (default
      ``time.monotonic``)
    - Expired entries are dropped lazily on read
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value for ``key`` if present and fresh."""
        entry = self._entries.get(key, _MISSING)
        if entry is _MISSING:
            self.misses += 1
            return default
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            self.misses += 1
            return default
        self.hits += 1
        return value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        self._entries[key] = (self._clock() + ttl_seconds, value)

    def discard(self, key: str) -> bool:
        """Drop a single entry. Returns True if it was present."""
        return self._entries.pop(key, _MISSING) is not _MISSING

    def invalidate(self, prefix: Optional[str] = None) -> int:
        """
        Drop entries whose key starts with ``prefix`` (all entries if None).

        Returns the number of entries removed.
        """
        if prefix is None:
            removed = len(self._entries)
            self._entries.clear()
        else:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            removed = len(doomed)
        if removed:
            logger.debug("Invalidated %d cache entries for prefix %r", removed, prefix)
        return removed

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        return len(self._entries)
