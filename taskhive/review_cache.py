"""
Review Cache

Optional memoization of derived review state, keyed by task id.

- TTL-based expiry; ttl_seconds <= 0 disables caching entirely
- Invalidated on every changelog write for the task
- In-flight map: concurrent derivations of the same task share one
  computation instead of each reading the changelog
- A result computed before an invalidation is never stored

Constructed once per process and passed by reference to the service.
The changelog remains the source of truth; this is never consulted by
anything that writes.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from .review_engine import ReviewInfo

logger = logging.getLogger("review_cache")


class ReviewCache:
    """TTL cache with in-flight request deduplication."""

    def __init__(self, ttl_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        # task_id -> (stored_at, review)
        self._entries: Dict[Any, Tuple[float, ReviewInfo]] = {}
        self._in_flight: Dict[Any, asyncio.Future] = {}
        self._generations: Dict[Any, int] = {}
        self._hits = 0
        self._misses = 0

    @property
    def enabled(self) -> bool:
        return self._ttl > 0

    def get(self, key: Any) -> Optional[ReviewInfo]:
        """Cached review, or None on miss/expiry."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        stored_at, review = entry
        if self._clock() - stored_at > self._ttl:
            del self._entries[key]
            self._misses += 1
            return None

        self._hits += 1
        return review

    def put(self, key: Any, review: ReviewInfo) -> None:
        if not self.enabled:
            return
        self._entries[key] = (self._clock(), review)

    def invalidate(self, key: Any) -> None:
        self._entries.pop(key, None)
        self._in_flight.pop(key, None)
        self._generations[key] = self._generations.get(key, 0) + 1

    def clear(self) -> None:
        for key in list(self._entries) + list(self._in_flight):
            self.invalidate(key)

    async def get_or_compute(self, key: Any, compute: Callable[[], Awaitable[ReviewInfo]]) -> ReviewInfo:
        """
        Return a cached review or compute it once for all concurrent callers.

        Exceptions from `compute` propagate to every waiting caller and
        nothing is cached. If the computing caller is cancelled, waiters
        retry the computation themselves.
        """
        if not self.enabled:
            return await compute()

        cached = self.get(key)
        if cached is not None:
            return cached

        pending = self._in_flight.get(key)
        if pending is not None:
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                if not pending.cancelled():
                    raise
                logger.debug(f"Shared review computation for {key} was cancelled; retrying")
                return await self.get_or_compute(key, compute)

        generation = self._generations.get(key, 0)
        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            review = await compute()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
                # Retrieve so an unawaited future does not log a warning
                future.exception()
            raise
        finally:
            if self._in_flight.get(key) is future:
                del self._in_flight[key]

        if self._generations.get(key, 0) == generation:
            self.put(key, review)
        else:
            logger.debug(f"Discarding review for {key}: invalidated during computation")
        future.set_result(review)
        return review

    def stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "entries": len(self._entries),
            "in_flight": len(self._in_flight),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 3) if total else 0.0,
        }
