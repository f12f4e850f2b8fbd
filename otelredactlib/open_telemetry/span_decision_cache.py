"""In-memory span decision cache with TTL.

Remembers which spans were filtered so that descendants exported in a later
batch are filtered too. A single process-wide instance is shared by default.
"""

import logging
import time
from threading import Lock
from typing import Callable, Optional

from cachetools import TTLCache

from otelredactlib.utilities.logger.log_levels import SRC_LOG_LEVELS

logger = logging.getLogger(__name__)
logger.setLevel(SRC_LOG_LEVELS["URL_FILTER"])

DEFAULT_DECISION_CACHE_SIZE: int = 10_000
DEFAULT_DECISION_CACHE_TTL_SECONDS: float = 3600.0


class TtlSpanDecisionCache:
    """
    Bounded, time-limited span decision cache.

    Implicitly implements the SpanDecisionCache protocol through
    structural subtyping. Entries expire independently after ``ttl_seconds``;
    once ``max_size`` is reached the least recently used entry is evicted.
    All operations take a lock because TTLCache is not thread-safe.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_DECISION_CACHE_SIZE,
        ttl_seconds: float = DEFAULT_DECISION_CACHE_TTL_SECONDS,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the cache.

        Args:
            max_size: Maximum number of span decisions kept
            ttl_seconds: Lifetime of each entry in seconds
            timer: Clock used for expiry (injectable for tests)
        """
        self._cache: TTLCache[str, bool] = TTLCache(
            maxsize=max_size, ttl=ttl_seconds, timer=timer
        )
        self._lock = Lock()

    def get(self, span_id: str) -> Optional[bool]:
        with self._lock:
            return self._cache.get(span_id)

    def set(self, span_id: str, filtered: bool) -> None:
        with self._lock:
            self._cache[span_id] = filtered

    def has(self, span_id: str) -> bool:
        with self._lock:
            return span_id in self._cache

    def delete(self, span_id: str) -> None:
        with self._lock:
            self._cache.pop(span_id, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def size(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)


_shared_cache: Optional[TtlSpanDecisionCache] = None
_shared_cache_lock = Lock()


def get_shared_span_decision_cache() -> TtlSpanDecisionCache:
    """
    Return the process-wide decision cache, creating it on first use.

    Returns:
        The shared TtlSpanDecisionCache
    """
    global _shared_cache
    with _shared_cache_lock:
        if _shared_cache is None:
            _shared_cache = TtlSpanDecisionCache()
            logger.debug(
                "Created shared span decision cache (max_size=%d, ttl=%ss)",
                DEFAULT_DECISION_CACHE_SIZE,
                DEFAULT_DECISION_CACHE_TTL_SECONDS,
            )
        return _shared_cache
