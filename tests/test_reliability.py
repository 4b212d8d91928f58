"""Tests for the query cache, retry, pagination and rate bookkeeping."""

import asyncio

import pytest
import requests

from core.cache import QueryCache, make_key, with_cache
from core.errors import RateLimitExceeded, TransientFailure, UpstreamError
from core.pagination import auto_paginate
from core.rate_limits import HardCaps, RequestRateTracker, rate_limit_info, validate_hard_caps
from core.reliability import ReliableRequester
from core.retry import RetryPolicy, backoff_delay, is_retryable, with_retry


class Producer:
    def __init__(self, value="data"):
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return f"{self.value}-{self.calls}"


# ============================================================================
# Cache
# ============================================================================

def test_cache_key_ignores_param_order():
    assert make_key("e", {"a": 1, "b": 2}) == make_key("e", {"b": 2, "a": 1})
    assert make_key("e", {"a": 1}) != make_key("f", {"a": 1})


def test_cache_hit_within_ttl_skips_producer(clock):
    cache = QueryCache(clock=clock)
    producer = Producer()

    first = asyncio.run(with_cache(cache, "e", {"q": 1}, producer, ttl=60))
    clock.advance(30)
    second = asyncio.run(with_cache(cache, "e", {"q": 1}, producer, ttl=60))

    assert producer.calls == 1
    assert (first.cached, second.cached) == (False, True)
    assert second.data == first.data
    assert second.cache_key == first.cache_key


def test_cache_expiry_calls_producer_again(clock):
    cache = QueryCache(clock=clock)
    producer = Producer()

    asyncio.run(with_cache(cache, "e", {"q": 1}, producer, ttl=60))
    clock.advance(61)
    result = asyncio.run(with_cache(cache, "e", {"q": 1}, producer, ttl=60))

    assert producer.calls == 2
    assert result.cached is False
    assert result.data == "data-2"


def test_skip_cache_refreshes_entry(clock):
    cache = QueryCache(clock=clock)
    producer = Producer()

    asyncio.run(with_cache(cache, "e", {}, producer))
    fresh = asyncio.run(with_cache(cache, "e", {}, producer, skip_cache=True))
    cached = asyncio.run(with_cache(cache, "e", {}, producer))

    assert fresh.cached is False
    assert cached.data == "data-2"


def test_full_cache_evicts_oldest_insertion(clock):
    cache = QueryCache(max_size=2, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)

    assert "a" not in cache
    assert "b" in cache and "c" in cache
    assert len(cache) == 2


def test_cache_stats_count_expired(clock):
    cache = QueryCache(clock=clock)
    cache.set("short", 1, ttl=10)
    cache.set("long", 2, ttl=100)
    clock.advance(50)

    assert cache.stats() == {"total": 2, "valid": 1, "expired": 1, "max_size": 1000}


def test_unserializable_params_fall_back_to_no_cache(clock):
    cache = QueryCache(clock=clock)
    producer = Producer()
    circular = {}
    circular["self"] = circular

    result = asyncio.run(with_cache(cache, "e", circular, producer))

    assert result.cached is False
    assert result.cache_key is None
    assert len(cache) == 0


# ============================================================================
# Retry
# ============================================================================

class FlakyOperation:
    def __init__(self, failures, result="ok"):
        self.failures = list(failures)
        self.result = result
        self.attempts = 0

    async def __call__(self):
        self.attempts += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


def test_404_is_not_retried(fake_sleep, sleeps):
    operation = FlakyOperation([UpstreamError(404, "not found")] * 3)

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(with_retry(operation, sleep=fake_sleep))

    assert excinfo.value.status_code == 404
    assert operation.attempts == 1
    assert sleeps == []


def test_two_503s_then_success(fake_sleep, sleeps):
    operation = FlakyOperation([UpstreamError(503, "busy"), UpstreamError(503, "busy")])

    result = asyncio.run(with_retry(operation, sleep=fake_sleep, rng=lambda a, b: 0.0))

    assert result == "ok"
    assert operation.attempts == 3
    assert sleeps == [1.0, 2.0]


def test_exhausted_attempts_reraise_last_error(fake_sleep):
    operation = FlakyOperation([UpstreamError(429, "slow down")] * 2 + [UpstreamError(500, "boom")])

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(with_retry(operation, RetryPolicy(max_attempts=3), sleep=fake_sleep))

    assert excinfo.value.status_code == 500
    assert operation.attempts == 3


def test_retryability_classification():
    assert is_retryable(UpstreamError(429, "x"))
    assert is_retryable(UpstreamError(502, "x"))
    assert not is_retryable(UpstreamError(400, "x"))
    assert is_retryable(TransientFailure("reset"))
    assert is_retryable(requests.ConnectionError("down"))
    assert not is_retryable(ValueError("bad"))


def test_backoff_delay_is_capped_and_jittered():
    policy = RetryPolicy(base_delay=1.0, max_delay=30.0, backoff_factor=2.0, jitter_fraction=0.1)

    assert backoff_delay(0, policy, rng=lambda a, b: 0.0) == 1.0
    assert backoff_delay(3, policy, rng=lambda a, b: 0.0) == 8.0
    assert backoff_delay(10, policy, rng=lambda a, b: 0.0) == 30.0
    assert backoff_delay(2, policy, rng=lambda a, b: 1.0) == pytest.approx(4.4)
    assert backoff_delay(2, policy, rng=lambda a, b: -1.0) == pytest.approx(3.6)


# ============================================================================
# Pagination
# ============================================================================

def make_pages(total):
    rows = list(range(total))
    offsets = []

    async def fetch_page(offset, limit):
        offsets.append(offset)
        return rows[offset:offset + limit]

    return fetch_page, offsets


def test_pagination_stops_on_short_page():
    fetch_page, offsets = make_pages(25)
    records = asyncio.run(auto_paginate(fetch_page, page_size=10, max_records=100))

    assert records == list(range(25))
    assert offsets == [0, 10, 20]


def test_pagination_truncates_to_max_records():
    fetch_page, offsets = make_pages(100)
    records = asyncio.run(auto_paginate(fetch_page, page_size=10, max_records=25))

    assert len(records) == 25
    assert offsets == [0, 10, 20]


def test_pagination_page_safety_bound():
    fetch_page, offsets = make_pages(1000)
    records = asyncio.run(auto_paginate(fetch_page, page_size=10, max_records=1000, max_pages=3))

    assert len(records) == 30
    assert len(offsets) == 3


def test_pagination_empty_first_page():
    fetch_page, offsets = make_pages(0)
    assert asyncio.run(auto_paginate(fetch_page, page_size=10)) == []
    assert offsets == [0]


# ============================================================================
# Rate tracking and hard caps
# ============================================================================

def test_rate_tracker_window_resets(clock):
    tracker = RequestRateTracker(window_seconds=60, clock=clock)
    tracker.record()
    tracker.record()
    clock.advance(30)

    snapshot = tracker.snapshot()
    assert snapshot["count"] == 2
    assert snapshot["requests_per_minute"] == 4.0

    clock.advance(31)
    assert tracker.snapshot()["count"] == 0


def test_hard_caps_report_each_violation():
    caps = HardCaps()
    violations = validate_hard_caps({"days": 400, "limit": 20000}, caps)
    assert [v["param"] for v in violations] == ["days", "limit"]

    assert validate_hard_caps({"limit": 20000}, caps, aggregated=True) == []
    assert validate_hard_caps({"days": 30, "limit": None}, caps) == []


def test_rate_limit_info_tiers():
    assert rate_limit_info(False)["requests_per_day"] == 1000
    assert rate_limit_info(True)["requests_per_day"] == 50000


# ============================================================================
# Composed requester
# ============================================================================

def test_requester_rejects_over_cap_before_fetching(requester):
    with pytest.raises(RateLimitExceeded) as excinfo:
        requester.check_hard_caps({"days": 500})
    assert excinfo.value.violations[0]["max"] == 365


def test_requester_counts_every_attempt_and_caches(requester, sleeps):
    operation = FlakyOperation([UpstreamError(503, "busy")], result=[{"a": 1}])

    async def fetch(params):
        return await operation()

    first = asyncio.run(requester.request("endpoint", {"q": 1}, fetch))
    second = asyncio.run(requester.request("endpoint", {"q": 1}, fetch))

    assert first.data == [{"a": 1}]
    assert second.cached is True
    assert operation.attempts == 2
    assert requester.tracker.snapshot()["count"] == 2
    assert len(sleeps) == 1


def test_requester_paginates_with_limit_and_offset(requester):
    seen = []

    async def fetch(params):
        seen.append((params["$offset"], params["$limit"]))
        return [params["$offset"] + i for i in range(params["$limit"])] if params["$offset"] < 20 else []

    result = asyncio.run(requester.paginate("endpoint", {"$where": "x"}, fetch, max_records=25, page_size=10))

    assert result.data == list(range(20))
    assert seen == [(0, 10), (10, 10), (20, 10)]


def test_requester_without_cache():
    requester = ReliableRequester(cache=None)
    assert requester.cache_stats() == {"enabled": False}
