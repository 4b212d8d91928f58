"""
HPD Housing Maintenance Code Violations Dataset Connector

Queries violations issued by the Department of Housing Preservation and
Development. Violations are classed A (non-hazardous), B (hazardous) and
C (immediately hazardous).

Dataset: Housing Maintenance Code Violations
Source: https://data.cityofnewyork.us/Housing-Development/Housing-Maintenance-Code-Violations/wvxf-dwi5
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from core.envelope import DataSource
from core.geo import borough_id_for
from core.time_windows import QueryWindow
from datasets.base import SocrataDataset, build_where, clean_counts, window_conditions

logger = logging.getLogger(__name__)


class HousingViolationsDataset(SocrataDataset):
    """Connector for HPD housing violation data."""

    DATASET_ID = "wvxf-dwi5"
    SOURCE = DataSource.HPD_VIOLATIONS

    GROUP_LIMIT = 10

    def _filters(
        self,
        window: QueryWindow,
        borough: Optional[str],
        status: Optional[str],
    ) -> List[str]:
        conditions = window_conditions("inspectiondate", window)
        boro_id = borough_id_for(borough)
        if boro_id:
            conditions.append(f"boroid = '{boro_id}'")
        if status:
            conditions.append(f"violationstatus = '{status}'")
        return conditions

    def class_counts_params(
        self,
        window: QueryWindow,
        borough: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Violation counts per class (A/B/C/I)."""
        return {
            "$select": "class, COUNT(*) AS count",
            "$where": build_where(self._filters(window, borough, status)),
            "$group": "class",
            "$order": "count DESC",
            "$limit": self.GROUP_LIMIT,
        }

    def borough_counts_params(
        self,
        window: QueryWindow,
        borough: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Violation counts per borough."""
        return {
            "$select": "boroid, boro, COUNT(*) AS count",
            "$where": build_where(self._filters(window, borough, status)),
            "$group": "boroid, boro",
            "$order": "count DESC",
            "$limit": self.GROUP_LIMIT,
        }

    def raw_params(
        self,
        window: QueryWindow,
        borough: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Individual violations, most recent inspection first."""
        return {
            "$where": build_where(self._filters(window, borough, status)),
            "$order": "inspectiondate DESC",
        }

    @staticmethod
    def class_counts(rows: Sequence[Dict[str, Any]]) -> Dict[str, int]:
        """Collapse class rows into {class: count}; blank classes become 'Unknown'."""
        df = clean_counts(rows)
        if df.empty:
            return {}
        if "class" not in df.columns:
            df["class"] = None
        df["class"] = df["class"].fillna("Unknown").replace("", "Unknown")
        grouped = df.groupby("class", sort=False)["count"].sum()
        return {str(cls): int(count) for cls, count in grouped.sort_values(ascending=False).items()}

    @staticmethod
    def borough_counts(rows: Sequence[Dict[str, Any]]) -> pd.DataFrame:
        """Borough rows with integer counts, largest first."""
        df = clean_counts(rows)
        if df.empty:
            return pd.DataFrame(columns=["boroid", "boro", "count"])
        for column in ("boroid", "boro"):
            if column not in df.columns:
                df[column] = None
            df[column] = df[column].astype(object).where(df[column].notna(), None)
        return df.sort_values("count", ascending=False, kind="stable")[["boroid", "boro", "count"]]
