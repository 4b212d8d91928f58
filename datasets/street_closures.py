"""
DOT Street Closures Dataset Connector

Queries street closures due to construction permits. The feed publishes one
row per (segment, permit purpose), so a single closure usually appears
several times; the street closure tool merges those rows.

Dataset: Street Closures due to construction activities by Block
Source: https://data.cityofnewyork.us/Transportation/Street-Closures-due-to-construction-activities-by-/i6b5-j7bu
"""

from datetime import date
from typing import Any, Dict, List, Optional

from core.envelope import DataSource
from datasets.base import SocrataDataset, build_where, like_literal

# Canonical borough name -> DOT borough letter
BOROUGH_TO_DOT_CODE = {
    "MANHATTAN": "M",
    "BRONX": "X",
    "BROOKLYN": "B",
    "QUEENS": "Q",
    "STATEN ISLAND": "S",
}


class StreetClosuresDataset(SocrataDataset):
    """Connector for DOT street closure data."""

    DATASET_ID = "i6b5-j7bu"
    SOURCE = DataSource.DOT_CLOSURES

    def search_params(
        self,
        borough: Optional[str] = None,
        work_type: Optional[str] = None,
        active_on: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Closure search, soonest ending first.

        Args:
            borough: Canonical borough name
            work_type: Substring of the permit purpose (already SoQL-escaped);
                LIKE wildcards are dropped
            active_on: Only closures whose work period covers this day
        """
        conditions: List[str] = []
        if borough:
            conditions.append(f"borough_code = '{BOROUGH_TO_DOT_CODE.get(borough, borough)}'")
        work_type = like_literal(work_type or "")
        if work_type:
            conditions.append(f"purpose LIKE '%{work_type}%'")
        if active_on is not None:
            day = active_on.isoformat()
            conditions.append(f"work_start_date <= '{day}T23:59:59.999'")
            conditions.append(f"work_end_date >= '{day}T00:00:00.000'")

        params: Dict[str, Any] = {"$order": "work_end_date ASC"}
        where = build_where(conditions)
        if where:
            params["$where"] = where
        return params
