"""Shared fixtures: fake clock, recorded sleeps and a fake requests session."""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import pytest

from core.cache import QueryCache
from core.rate_limits import HardCaps, RequestRateTracker
from core.reliability import ReliableRequester
from mcp_tools.context import ToolContext

FIXED_NOW = datetime(2025, 1, 5, 12, 0, 0)
BASE_URL = "https://data.example.test/resource"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, reason: str = "OK"):
        self._payload = payload
        self.status_code = status_code
        self.reason = reason

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """
    Stand-in for requests.Session.

    ``responder(url, params)`` returns a FakeResponse or raises; every call is
    recorded in ``calls``.
    """

    def __init__(self, responder: Callable[[str, Dict[str, Any]], FakeResponse]):
        self.responder = responder
        self.calls: List[Dict[str, Any]] = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "headers": headers})
        return self.responder(url, dict(params or {}))

    def close(self) -> None:
        pass


def page_responder(rows: List[Dict[str, Any]]):
    """Serve ``rows`` honoring $limit/$offset."""
    def respond(url, params):
        offset = int(params.get("$offset", 0))
        limit = int(params.get("$limit", len(rows) or 1))
        return FakeResponse(rows[offset:offset + limit])
    return respond


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def sleep(delay: float) -> None:
        sleeps.append(delay)
    return sleep


@pytest.fixture
def requester(clock, fake_sleep) -> ReliableRequester:
    return ReliableRequester(
        cache=QueryCache(clock=clock),
        tracker=RequestRateTracker(clock=clock),
        sleep=fake_sleep,
        rng=lambda low, high: 0.0,
    )


@pytest.fixture
def make_context(requester):
    """Build a ToolContext around a fake session."""
    def build(
        responder: Callable[[str, Dict[str, Any]], FakeResponse],
        hard_caps: Optional[HardCaps] = None,
        now: datetime = FIXED_NOW,
    ):
        if hard_caps is not None:
            requester.hard_caps = hard_caps
        session = FakeSession(responder)
        context = ToolContext.build(
            requester,
            base_url=BASE_URL,
            session=session,
            now=lambda: now,
        )
        return context, session
    return build
