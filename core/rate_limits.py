"""
Rate limit bookkeeping.

Nothing here blocks or throttles requests. The tracker only reports an
advisory requests-per-minute estimate, and the hard caps are checked before
a query is sent so oversized requests fail without touching the API.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping

# Socrata's published limits per app-token tier
RATE_LIMIT_TIERS = {
    "without_token": {"requests_per_day": 1000, "burst_limit": 10},
    "with_token": {"requests_per_day": 50000, "burst_limit": 100},
}

TOKEN_URL = "https://data.cityofnewyork.us/profile/app_tokens"


@dataclass(frozen=True)
class HardCaps:
    max_days: int = 365
    max_limit: int = 10000
    max_aggregated_limit: int = 50000
    default_limit: int = 100
    prefer_aggregation_over: int = 1000


class RequestRateTracker:
    """
    Fixed-window request counter.

    The count resets once ``window_seconds`` have elapsed since the window
    opened.
    """

    def __init__(self, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._count = 0
        self._window_start = clock()

    def _roll(self, now: float) -> None:
        if now - self._window_start > self.window_seconds:
            self._count = 0
            self._window_start = now

    def record(self) -> None:
        now = self._clock()
        self._roll(now)
        self._count += 1

    def snapshot(self) -> Dict[str, Any]:
        now = self._clock()
        self._roll(now)
        elapsed = now - self._window_start
        return {
            "count": self._count,
            "window_seconds": round(elapsed, 3),
            "requests_per_minute": round(self._count / elapsed * 60, 2) if elapsed > 0 else 0.0,
        }


def validate_hard_caps(
    params: Mapping[str, Any],
    caps: HardCaps,
    aggregated: bool = False,
) -> List[Dict[str, Any]]:
    """
    Check proposed query parameters against the hard caps.

    Returns:
        One violation dict per offending parameter (empty when within caps)
    """
    max_limit = caps.max_aggregated_limit if aggregated else caps.max_limit
    violations = []

    days = params.get("days")
    if days is not None and days > caps.max_days:
        violations.append({
            "param": "days",
            "value": days,
            "max": caps.max_days,
            "message": f"Days parameter exceeds maximum of {caps.max_days}",
        })

    limit = params.get("limit")
    if limit is not None and limit > max_limit:
        violations.append({
            "param": "limit",
            "value": limit,
            "max": max_limit,
            "message": f"Limit parameter exceeds maximum of {max_limit}",
        })

    return violations


def should_use_aggregation(estimated_records: int, caps: HardCaps) -> bool:
    return estimated_records > caps.prefer_aggregation_over


def rate_limit_info(has_token: bool) -> Dict[str, Any]:
    tier = RATE_LIMIT_TIERS["with_token" if has_token else "without_token"]
    return {
        "has_token": has_token,
        "requests_per_day": tier["requests_per_day"],
        "burst_limit": tier["burst_limit"],
        "recommendation": (
            "You have an API token configured. Higher rate limits are available."
            if has_token else
            f"No API token detected. Get a free token at {TOKEN_URL} for 50x higher rate limits."
        ),
    }
