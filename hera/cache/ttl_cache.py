"""
Time-bounded key/value cache used to skip repeat gateway reads.
"""
import time
import logging
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 5 * 60 * 1000
STATS_SAMPLE_SIZE = 10


class TtlCache:
    """
    Entries expire `ttl_ms` after they were stored, whatever the access pattern.
    Stored values are never patched; writers call `invalidate` instead.
    """

    def __init__(self, ttl_ms: int = DEFAULT_TTL_MS, clock: Callable[[], float] = time.monotonic):
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def set(self, key: str, value: Any):
        """Store `value` under `key`, replacing any previous entry."""
        self._entries[key] = (value, self._now_ms())

    def get(self, key: str) -> Optional[Any]:
        """
        Return the cached value, or None on a miss.
        An expired entry is evicted on the way out.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self._now_ms() - stored_at > self.ttl_ms:
            del self._entries[key]
            logger.debug("Cache entry expired: %s", key)
            return None
        return value

    def invalidate(self, pattern: str) -> int:
        """Remove every key containing `pattern`. Returns the number of keys removed."""
        stale = [key for key in self._entries if pattern in key]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug("Invalidated %d cache entries matching '%s'", len(stale), pattern)
        return len(stale)

    def clear(self):
        self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        """Diagnostics only: entry count and a sample of keys."""
        return {
            'size': len(self._entries),
            'keys': list(self._entries)[:STATS_SAMPLE_SIZE],
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
