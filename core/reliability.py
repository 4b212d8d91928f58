"""
Reliability layer for Socrata requests.

ReliableRequester composes the query cache, retry with backoff,
auto-pagination and rate bookkeeping around a caller-supplied fetch
coroutine. All state is owned by the instance, so tests (and separate
servers in one process) never share a cache or a rate counter.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from core.cache import CachedResult, CacheTTL, QueryCache, with_cache
from core.errors import RateLimitExceeded
from core.pagination import auto_paginate
from core.rate_limits import HardCaps, RequestRateTracker, rate_limit_info, validate_hard_caps
from core.retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)

Fetch = Callable[[Dict[str, Any]], Awaitable[Any]]


class ReliableRequester:
    """
    Cache + retry + pagination + rate tracking.

    Args:
        cache: Query cache (None disables caching)
        tracker: Request rate tracker
        retry_policy: Backoff tuning
        hard_caps: Pre-flight limits
        cache_ttls: TTL tiers
        has_token: Whether an app token is configured (advisory only)
        sleep: Awaitable sleep used between retries
    """

    def __init__(
        self,
        cache: Optional[QueryCache] = None,
        tracker: Optional[RequestRateTracker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        hard_caps: Optional[HardCaps] = None,
        cache_ttls: Optional[CacheTTL] = None,
        has_token: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[float, float], float] = random.uniform,
    ):
        self.cache = cache
        self.tracker = tracker or RequestRateTracker()
        self.retry_policy = retry_policy or RetryPolicy()
        self.hard_caps = hard_caps or HardCaps()
        self.cache_ttls = cache_ttls or CacheTTL()
        self.has_token = has_token
        self._sleep = sleep
        self._rng = rng

    # ------------------------------------------------------------------
    # Pre-flight and reporting
    # ------------------------------------------------------------------

    def check_hard_caps(self, params: Mapping[str, Any], aggregated: bool = False) -> None:
        """Raise RateLimitExceeded if ``params`` exceed the hard caps."""
        violations = validate_hard_caps(params, self.hard_caps, aggregated=aggregated)
        if violations:
            logger.info(f"Rejected query before sending: {violations}")
            raise RateLimitExceeded(violations)

    def rate_info(self) -> Dict[str, Any]:
        info = rate_limit_info(self.has_token)
        info["current_rate"] = self.tracker.snapshot()
        return info

    def cache_stats(self) -> Dict[str, Any]:
        if self.cache is None:
            return {"enabled": False}
        return {"enabled": True, **self.cache.stats()}

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def call(self, fetch: Fetch, params: Dict[str, Any]) -> Any:
        """One logical request: every attempt is counted, failures retried."""
        async def attempt() -> Any:
            self.tracker.record()
            return await fetch(params)

        return await with_retry(attempt, self.retry_policy, sleep=self._sleep, rng=self._rng)

    async def request(
        self,
        endpoint: str,
        params: Mapping[str, Any],
        fetch: Fetch,
        ttl: Optional[float] = None,
        use_cache: bool = True,
        skip_cache: bool = False,
    ) -> CachedResult:
        """Cached, retried single request."""
        query = dict(params)

        async def produce() -> Any:
            return await self.call(fetch, query)

        return await with_cache(
            self.cache if use_cache else None,
            endpoint,
            query,
            produce,
            ttl=self.cache_ttls.default if ttl is None else ttl,
            skip_cache=skip_cache,
        )

    async def paginate(
        self,
        endpoint: str,
        params: Mapping[str, Any],
        fetch: Fetch,
        max_records: Optional[int] = None,
        page_size: int = 1000,
        max_pages: int = 10,
        ttl: Optional[float] = None,
        use_cache: bool = True,
        skip_cache: bool = False,
    ) -> CachedResult:
        """
        Cached, paginated request; each page is retried independently.

        ``$limit``/``$offset`` are set per page. The cache key covers the
        whole result, including ``max_records``.
        """
        max_records = self.hard_caps.max_limit if max_records is None else max_records
        page_size = max(1, min(page_size, max_records))
        base = dict(params)

        async def fetch_page(offset: int, limit: int) -> Any:
            page_params = {**base, "$limit": limit, "$offset": offset}
            return await self.call(fetch, page_params)

        async def produce() -> Any:
            return await auto_paginate(
                fetch_page,
                page_size=page_size,
                max_records=max_records,
                max_pages=max_pages,
            )

        return await with_cache(
            self.cache if use_cache else None,
            endpoint,
            {**base, "max_records": max_records},
            produce,
            ttl=self.cache_ttls.default if ttl is None else ttl,
            skip_cache=skip_cache,
        )
