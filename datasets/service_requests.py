"""
311 Service Requests Dataset Connector

Queries NYC 311 non-emergency service requests (2010 to present).
Updated daily on NYC Open Data.

Dataset: 311 Service Requests from 2010 to Present
Source: https://data.cityofnewyork.us/Social-Services/311-Service-Requests-from-2010-to-Present/erm2-nwe9
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from core.envelope import DataSource
from core.time_windows import QueryWindow
from datasets.base import SocrataDataset, build_where, clean_counts, window_conditions

logger = logging.getLogger(__name__)


class ServiceRequestsDataset(SocrataDataset):
    """Connector for NYC 311 service request data."""

    DATASET_ID = "erm2-nwe9"
    SOURCE = DataSource.NYC_311

    SEARCH_FIELDS = [
        "unique_key",
        "created_date",
        "complaint_type",
        "descriptor",
        "borough",
        "community_board",
        "bbl",
        "latitude",
        "longitude",
        "incident_address",
        "status",
        "agency",
        "resolution_description",
    ]

    # Aggregations return one row per (day, complaint type)
    TREND_ROW_LIMIT = 50000

    def _filters(
        self,
        window: QueryWindow,
        complaint_type: Optional[str],
        borough: Optional[str],
    ) -> List[str]:
        conditions = window_conditions("created_date", window)
        if complaint_type:
            conditions.append(f"complaint_type = '{complaint_type}'")
        if borough:
            conditions.append(f"borough = '{borough}'")
        return conditions

    def search_params(
        self,
        window: QueryWindow,
        complaint_type: Optional[str] = None,
        borough: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Raw complaint search, newest first.

        Args:
            window: Time window on created_date
            complaint_type: Exact complaint type (already SoQL-escaped)
            borough: Canonical borough name

        Returns:
            SoQL parameters without $limit/$offset (set by pagination)
        """
        return {
            "$select": ",".join(self.SEARCH_FIELDS),
            "$where": build_where(self._filters(window, complaint_type, borough)),
            "$order": "created_date DESC",
        }

    def trend_params(
        self,
        window: QueryWindow,
        complaint_type: Optional[str] = None,
        borough: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Daily counts per complaint type, grouped server-side."""
        return {
            "$select": "date_trunc_ymd(created_date) AS period, complaint_type, COUNT(*) AS count",
            "$where": build_where(self._filters(window, complaint_type, borough)),
            "$group": "period, complaint_type",
            "$order": "period ASC",
            "$limit": self.TREND_ROW_LIMIT,
        }

    @staticmethod
    def clean_trend_rows(rows: Sequence[Dict[str, Any]]) -> pd.DataFrame:
        """
        Clean aggregated trend rows.

        Returns:
            DataFrame with columns period ('YYYY-MM-DD'), topic, count (int);
            rows without a parseable period are dropped
        """
        df = clean_counts(rows)
        if df.empty:
            return pd.DataFrame(columns=["period", "topic", "count"])

        df = df.rename(columns={"complaint_type": "topic"})
        for column in ("period", "topic"):
            if column not in df.columns:
                df[column] = None
        periods = pd.to_datetime(df["period"], errors="coerce")

        dropped = int(periods.isna().sum())
        if dropped:
            logger.warning(f"Dropped {dropped} trend rows without a usable period")
        df = df[periods.notna()].copy()
        df["period"] = periods[periods.notna()].dt.strftime("%Y-%m-%d")
        return df[["period", "topic", "count"]]
