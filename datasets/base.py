"""
Base Dataset Connector

This module provides the base class for all NYC Open Data (Socrata) dataset
connectors. Each dataset connector is responsible for:
1. Building SoQL queries for its dataset
2. Fetching rows from the Socrata resource API
3. Cleaning the rows it gets back

The base class handles common functionality like:
- HTTP requests (blocking requests calls run in a worker thread)
- Mapping HTTP and network failures onto the error taxonomy
- Caching, retry and pagination through a ReliableRequester
- SoQL helpers shared by every dataset
"""

import asyncio
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd
import requests

from core.cache import CachedResult
from core.errors import TransientFailure, UpstreamError
from core.reliability import ReliableRequester
from core.time_windows import QueryWindow

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://data.cityofnewyork.us/resource"
PORTAL_URL = "https://data.cityofnewyork.us/d"

# SoQL LIKE wildcards
LIKE_WILDCARDS = re.compile(r"[%_]")


class SocrataDataset:
    """
    Base class for Socrata dataset connectors.

    Subclasses set DATASET_ID and SOURCE and add query builders for their
    dataset's fields.
    """

    DATASET_ID: str = ""
    SOURCE: str = ""

    def __init__(
        self,
        requester: ReliableRequester,
        base_url: str = DEFAULT_BASE_URL,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the connector.

        Args:
            requester: Reliability layer shared by all datasets of a server
            base_url: Socrata resource base URL
            headers: Extra request headers (X-App-Token when configured)
            timeout: Per-request timeout in seconds
            session: requests session (a new one is created if omitted)
        """
        self.requester = requester
        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers or {})
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/{self.DATASET_ID}.json"

    # ========================================================================
    # HTTP
    # ========================================================================

    def _get(self, params: Mapping[str, Any]) -> List[Dict[str, Any]]:
        """
        Make one blocking GET request.

        Raises:
            UpstreamError: Socrata answered with a non-2xx status
            TransientFailure: No usable response (timeout, connection reset)
        """
        logger.debug(f"GET {self.endpoint} params={dict(params)}")

        try:
            response = self.session.get(
                self.endpoint,
                params=dict(params),
                headers=self.headers,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientFailure(f"Request to {self.DATASET_ID} failed: {e}") from e

        if response.status_code >= 400:
            payload = None
            message = response.reason or "Request failed"
            try:
                payload = response.json()
                if isinstance(payload, dict) and payload.get("message"):
                    message = payload["message"]
            except ValueError:
                pass
            raise UpstreamError(response.status_code, message, payload)

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(response.status_code, f"Invalid JSON from Socrata: {e}") from e

    async def _fetch(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._get, params)

    # ========================================================================
    # Reliable queries
    # ========================================================================

    async def query(
        self,
        params: Mapping[str, Any],
        ttl: Optional[float] = None,
        use_cache: bool = True,
        skip_cache: bool = False,
    ) -> CachedResult:
        """Single cached, retried query (use for aggregations with a fixed $limit)."""
        return await self.requester.request(
            self.endpoint,
            params,
            self._fetch,
            ttl=ttl,
            use_cache=use_cache,
            skip_cache=skip_cache,
        )

    async def query_all(
        self,
        params: Mapping[str, Any],
        max_records: int,
        page_size: int = 1000,
        ttl: Optional[float] = None,
        use_cache: bool = True,
        skip_cache: bool = False,
    ) -> CachedResult:
        """Paginated query returning up to ``max_records`` rows."""
        return await self.requester.paginate(
            self.endpoint,
            params,
            self._fetch,
            max_records=max_records,
            page_size=page_size,
            ttl=ttl,
            use_cache=use_cache,
            skip_cache=skip_cache,
        )

    # ========================================================================
    # Provenance
    # ========================================================================

    def verification(self, params: Any, record_count: int, queried_at: datetime) -> Dict[str, Any]:
        """
        Where a result came from, so a reader can re-run the query by hand.

        Args:
            params: SoQL parameters sent (a list when the tool ran several queries)
            record_count: Rows or events the tool reported
            queried_at: When the tool ran
        """
        return {
            "dataset_id": self.DATASET_ID,
            "source": getattr(self.SOURCE, "value", self.SOURCE),
            "api_endpoint": self.endpoint,
            "dataset_url": f"{PORTAL_URL}/{self.DATASET_ID}",
            "query_parameters": params,
            "record_count": record_count,
            "data_freshness": queried_at.isoformat(timespec="seconds"),
        }


# =============================================================================
# Helper functions
# =============================================================================

def window_conditions(field: str, window: QueryWindow) -> List[str]:
    """Inclusive $where bounds for a floating-timestamp column."""
    start, end = window.soql_bounds()
    return [f"{field} >= '{start}'", f"{field} <= '{end}'"]


def like_literal(text: str) -> str:
    """Drop LIKE wildcards so user text only matches itself."""
    return LIKE_WILDCARDS.sub("", text)


def build_where(conditions: Sequence[str]) -> Optional[str]:
    """AND together non-empty conditions (None when there are none)."""
    parts = [c for c in conditions if c]
    return " AND ".join(parts) if parts else None


def clean_counts(rows: Sequence[Mapping[str, Any]], count_field: str = "count") -> pd.DataFrame:
    """
    DataFrame of aggregated rows with ``count_field`` coerced to int.

    Socrata returns COUNT(*) as a string; unparseable counts become 0.
    """
    df = pd.DataFrame(list(rows))
    if df.empty:
        return df
    if count_field not in df.columns:
        df[count_field] = 0
    df[count_field] = pd.to_numeric(df[count_field], errors="coerce").fillna(0).astype(int)
    return df
