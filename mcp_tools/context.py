"""
Shared state for tool handlers.

A ToolContext owns the query cache, rate tracker, geo memo and dataset
connectors used by every tool. Servers build one from settings at startup;
tests build their own with fakes injected.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

import requests

from core.cache import QueryCache
from core.geo import GeoEnricher
from core.rate_limits import RequestRateTracker
from core.reliability import ReliableRequester
from datasets.housing_violations import HousingViolationsDataset
from datasets.service_requests import ServiceRequestsDataset
from datasets.street_closures import StreetClosuresDataset

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    requester: ReliableRequester
    service_requests: ServiceRequestsDataset
    housing_violations: HousingViolationsDataset
    street_closures: StreetClosuresDataset
    geo: GeoEnricher = field(default_factory=GeoEnricher)
    now: Callable[[], datetime] = datetime.now

    @classmethod
    def build(
        cls,
        requester: ReliableRequester,
        base_url: str,
        headers: Optional[dict] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> "ToolContext":
        """Wire the three dataset connectors to one requester and session."""
        session = session or requests.Session()
        kwargs = dict(
            requester=requester,
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            session=session,
        )
        return cls(
            requester=requester,
            service_requests=ServiceRequestsDataset(**kwargs),
            housing_violations=HousingViolationsDataset(**kwargs),
            street_closures=StreetClosuresDataset(**kwargs),
            now=now,
        )

    @classmethod
    def from_settings(cls, settings) -> "ToolContext":
        requester = ReliableRequester(
            cache=QueryCache(
                max_size=settings.cache_max_size,
                default_ttl=settings.cache_default_ttl_seconds,
            ),
            tracker=RequestRateTracker(window_seconds=settings.rate_window_seconds),
            retry_policy=settings.retry_policy,
            hard_caps=settings.hard_caps,
            cache_ttls=settings.cache_ttls,
            has_token=settings.has_api_token,
        )
        logger.info(
            f"Tool context ready (token={'yes' if settings.has_api_token else 'no'}, "
            f"cache={settings.cache_max_size} entries)"
        )
        return cls.build(
            requester,
            base_url=settings.nyc_data_api_base_url,
            headers=settings.api_headers,
            timeout=settings.request_timeout_seconds,
        )


_default_context: Optional[ToolContext] = None


def get_default_context() -> ToolContext:
    """Process-wide context built from config.settings on first use."""
    global _default_context
    if _default_context is None:
        from config.settings import settings

        _default_context = ToolContext.from_settings(settings)
    return _default_context
