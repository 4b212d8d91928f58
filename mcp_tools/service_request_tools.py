"""
311 Service Request Tools for MCP Server

These tools allow LLMs to query NYC 311 service request data.
Includes complaint searches with neighborhood enrichment and
server-side aggregated trend analysis.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from core.aggregation import count_by, coverage, top_counts
from core.dedup import deduplicate, deduplicate_aggregated, key_on
from core.envelope import (
    DataSource,
    ErrorType,
    EventType,
    NormalizedRecord,
    error_envelope,
    success_envelope,
)
from core.errors import OpenDataError
from core.geo import GeoInfo, borough_id_for
from core.insights import add_insights, calculate_trend, search_311_insights, trends_311_insights
from core.rate_limits import should_use_aggregation
from core.time_windows import QueryWindow, compute_window, window_between, window_for_days
from core.validation import (
    batch_validate,
    validate_bool,
    validate_borough,
    validate_date,
    validate_days,
    validate_enum,
    validate_limit,
    validate_string,
)
from datasets.service_requests import ServiceRequestsDataset
from mcp_tools.common import ToolParams, failure_envelope, run_tool
from mcp_tools.context import ToolContext

logger = logging.getLogger(__name__)

NTA_COVERAGE_TARGET = 95.0
GROUP_BY_OPTIONS = ["day", "week", "month"]

# pandas period frequencies; weeks run Monday-Sunday
PERIOD_FREQ = {"day": "D", "week": "W-SUN", "month": "M"}


# ============================================================================
# Tool 1: Search 311 Complaints
# ============================================================================

@dataclass
class Search311Params(ToolParams):
    complaint_type: Any = None
    borough: Any = None
    start_date: Any = None
    end_date: Any = None
    days: Any = None
    limit: Any = 100
    use_cache: Any = True
    skip_cache: Any = False


def search_311_complaints_tool():
    """Tool definition for searching 311 complaints."""
    return {
        "name": "search_311_complaints",
        "description": (
            "Search NYC 311 service requests (noise, heat/hot water, illegal parking, "
            "street conditions, and more). Records are enriched with borough, community "
            "district and neighborhood (NTA). Useful for questions about complaint "
            "volumes, common issues and where they happen."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "complaint_type": {
                    "type": "string",
                    "description": "Exact complaint type (e.g., 'Noise - Residential', 'HEAT/HOT WATER')"
                },
                "borough": {
                    "type": "string",
                    "description": "Borough name or code (e.g., 'BROOKLYN', 'BX', '1')"
                },
                "start_date": {
                    "type": "string",
                    "description": "Start date (YYYY-MM-DD); use together with end_date"
                },
                "end_date": {
                    "type": "string",
                    "description": "End date (YYYY-MM-DD); use together with start_date"
                },
                "days": {
                    "type": "integer",
                    "description": "Number of days to look back (default: 90, max: 365)",
                    "minimum": 1,
                    "maximum": 365
                },
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of results (default: 100, max: 10000)",
                    "default": 100,
                    "minimum": 1,
                    "maximum": 10000
                },
                "use_cache": {"type": "boolean", "default": True},
                "skip_cache": {"type": "boolean", "default": False}
            },
            "required": []
        }
    }


def _search_window(args: Dict[str, Any], context: ToolContext) -> QueryWindow:
    now = context.now()
    if args["start_date"] is not None and args["end_date"] is not None:
        return window_between(args["start_date"], args["end_date"])
    if args["days"] is not None:
        return window_for_days(args["days"], now=now)
    return compute_window("90d", now=now)


def _requested_days(args: Dict[str, Any], window: QueryWindow) -> int:
    """
    Day count checked against the hard cap.

    A lookback is checked as asked, not by the window's inclusive length. An
    explicit range counts both end dates, so it may run one day past the cap.
    """
    if args["start_date"] is not None and args["end_date"] is not None:
        return window.days - 1
    if args["days"] is not None:
        return args["days"]
    return 90


async def search_311_complaints(params: Search311Params, context: ToolContext) -> Dict[str, Any]:
    validation = batch_validate({
        "complaint_type": validate_string(params.complaint_type, "complaint_type", max_length=200),
        "borough": validate_borough(params.borough),
        "limit": validate_limit(params.limit, max_value=10000, default=100),
        "start_date": validate_date(params.start_date, "start_date"),
        "end_date": validate_date(params.end_date, "end_date"),
        "days": validate_days(params.days),
        "use_cache": validate_bool(params.use_cache, "use_cache", True),
        "skip_cache": validate_bool(params.skip_cache, "skip_cache", False),
    })
    if not validation.valid:
        return validation.error
    args = validation.normalized

    try:
        window = _search_window(args, context)
    except ValueError as e:
        return error_envelope(
            ErrorType.INVALID_INPUT,
            str(e),
            details={"param": "start_date"},
            guidance="Make sure start_date is on or before end_date",
        )

    dataset = context.service_requests
    query = dataset.search_params(window, args["complaint_type"], args["borough"])
    started = time.perf_counter()
    try:
        context.requester.check_hard_caps({"days": _requested_days(args, window), "limit": args["limit"]})
        result = await dataset.query_all(
            query,
            max_records=args["limit"],
            use_cache=args["use_cache"],
            skip_cache=args["skip_cache"],
        )
    except OpenDataError as e:
        logger.error(f"311 search failed: {e}")
        return failure_envelope(e, context)
    request_time_ms = round((time.perf_counter() - started) * 1000)

    dedup = deduplicate(result.data or [], key_on("unique_key"))
    if dedup.duplicates_removed:
        logger.info(f"Removed {dedup.duplicates_removed} repeated 311 rows")

    records = []
    for row in dedup.records:
        records.append(NormalizedRecord(
            timestamp=row.get("created_date"),
            period=None,
            geo=context.geo.enrich_311(row),
            topic=row.get("complaint_type"),
            value=1,
            details={
                "unique_key": row.get("unique_key"),
                "created_date": row.get("created_date"),
                "complaint_type": row.get("complaint_type"),
                "descriptor": row.get("descriptor"),
                "incident_address": row.get("incident_address"),
                "status": row.get("status"),
                "agency": row.get("agency"),
                "resolution_description": row.get("resolution_description"),
            },
        ))

    nta_coverage = coverage(records, lambda r: r.geo.nta is not None, target=NTA_COVERAGE_TARGET)
    nta_coverage["records_with_nta"] = nta_coverage.pop("records_with_value")

    envelope = success_envelope(
        source=DataSource.NYC_311,
        event_type=EventType.SEARCH,
        window=window,
        records=records,
        meta={
            "top_complaint_types": top_counts(count_by(records, lambda r: r.topic), "type"),
            "nta_coverage": nta_coverage,
            "top_ntas": top_counts(count_by(records, lambda r: r.geo.nta), "nta"),
            "geo_enrichment": {"enabled": True, "cache_stats": context.geo.stats()},
            "filters": {
                "complaint_type": args["complaint_type"] or "ALL",
                "borough": args["borough"] or "ALL",
            },
            # Large raw pulls are better served by analyze_311_trends
            "aggregation_recommended": should_use_aggregation(args["limit"], context.requester.hard_caps),
            "deduplication": {
                "key": "unique_key",
                "original_count": dedup.original_count,
                "duplicates_removed": dedup.duplicates_removed,
            },
            "verification": dataset.verification(query, len(records), context.now()),
            "reliability": {
                "cached": result.cached,
                "cache_key": result.cache_key,
                "request_time_ms": request_time_ms,
                "query_cache_stats": context.requester.cache_stats(),
                "rate_limit_info": context.requester.rate_info(),
                "api_token_configured": context.requester.has_token,
            },
        },
    )
    return add_insights(envelope, search_311_insights)


async def handle_search_311_complaints(arguments: Dict[str, Any], context: Optional[ToolContext] = None) -> str:
    """Handler for searching 311 complaints."""
    return await run_tool("search_311_complaints", search_311_complaints, Search311Params, arguments, context)


# ============================================================================
# Tool 2: Analyze 311 Trends
# ============================================================================

@dataclass
class Trends311Params(ToolParams):
    complaint_type: Any = None
    borough: Any = None
    group_by: Any = "day"
    days: Any = 90
    use_cache: Any = True
    skip_cache: Any = False


def analyze_311_trends_tool():
    """Tool definition for 311 trend analysis."""
    return {
        "name": "analyze_311_trends",
        "description": (
            "Analyze how NYC 311 complaint volume changes over time using server-side "
            "aggregation. Returns a per-day, per-week or per-month timeline, the leading "
            "complaint types, and a trend comparing the last 7 periods with the 7 before."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "complaint_type": {
                    "type": "string",
                    "description": "Exact complaint type to analyze (default: all types)"
                },
                "borough": {
                    "type": "string",
                    "description": "Borough name or code"
                },
                "group_by": {
                    "type": "string",
                    "enum": GROUP_BY_OPTIONS,
                    "description": "Timeline granularity",
                    "default": "day"
                },
                "days": {
                    "type": "integer",
                    "description": "Number of days to analyze (default: 90, max: 365)",
                    "default": 90,
                    "minimum": 1,
                    "maximum": 365
                },
                "use_cache": {"type": "boolean", "default": True},
                "skip_cache": {"type": "boolean", "default": False}
            },
            "required": []
        }
    }


def roll_up(
    rows: Sequence[Dict[str, Any]],
    group_by: str,
    window: QueryWindow,
) -> List[Tuple[pd.Timestamp, int, List[Dict[str, Any]]]]:
    """
    Roll daily (period, topic, count) rows up to ``group_by`` periods.

    Every period in the window is present; periods without complaints
    count 0.

    Returns:
        [(period start, total, top 5 types)] in chronological order
    """
    freq = PERIOD_FREQ[group_by]
    buckets = pd.period_range(window.start, window.end, freq=freq).start_time

    df = pd.DataFrame(list(rows), columns=["period", "topic", "count"])
    if df.empty:
        return [(bucket, 0, []) for bucket in buckets]

    df["bucket"] = pd.to_datetime(df["period"]).dt.to_period(freq).dt.start_time
    totals = df.groupby("bucket")["count"].sum().reindex(buckets, fill_value=0)

    top_types: Dict[pd.Timestamp, List[Dict[str, Any]]] = {}
    for bucket, group in df.groupby("bucket"):
        per_type = group.groupby("topic")["count"].sum().sort_values(ascending=False, kind="stable").head(5)
        top_types[bucket] = [{"type": t, "count": int(c)} for t, c in per_type.items()]

    return [(bucket, int(total), top_types.get(bucket, [])) for bucket, total in totals.items()]


async def analyze_311_trends(params: Trends311Params, context: ToolContext) -> Dict[str, Any]:
    validation = batch_validate({
        "group_by": validate_enum(params.group_by, GROUP_BY_OPTIONS, "group_by", default="day"),
        "days": validate_days(params.days, default=90),
        "borough": validate_borough(params.borough),
        "complaint_type": validate_string(params.complaint_type, "complaint_type", max_length=200),
        "use_cache": validate_bool(params.use_cache, "use_cache", True),
        "skip_cache": validate_bool(params.skip_cache, "skip_cache", False),
    })
    if not validation.valid:
        return validation.error
    args = validation.normalized

    window = window_for_days(args["days"], now=context.now())
    dataset = context.service_requests
    query = dataset.trend_params(window, args["complaint_type"], args["borough"])

    try:
        context.requester.check_hard_caps({"days": args["days"]}, aggregated=True)
        result = await dataset.query(
            query,
            use_cache=args["use_cache"],
            skip_cache=args["skip_cache"],
        )
    except OpenDataError as e:
        logger.error(f"311 trend query failed: {e}")
        return failure_envelope(e, context)

    raw_rows = ServiceRequestsDataset.clean_trend_rows(result.data or []).to_dict("records")
    rows = deduplicate_aggregated(raw_rows)

    timeline = roll_up(rows, args["group_by"], window)
    trend = calculate_trend([total for _, total, _ in timeline])
    total_complaints = sum(total for _, total, _ in timeline)

    borough = args["borough"]
    geo = GeoInfo(borough=borough, borough_id=borough_id_for(borough))
    topic = args["complaint_type"] or "ALL"
    records = [
        NormalizedRecord(
            timestamp=None,
            period=bucket.strftime("%Y-%m-%d"),
            geo=geo,
            topic=topic,
            value=total,
            details={"top_types": types},
        )
        for bucket, total, types in timeline
    ]

    envelope = success_envelope(
        source=DataSource.NYC_311,
        event_type=EventType.TREND_ANALYSIS,
        window=window,
        records=records,
        count=total_complaints,
        meta={
            "group_by": args["group_by"],
            "borough": borough or "ALL",
            "complaint_type": topic,
            "trend": trend.to_dict(),
            "top_types": top_counts(count_by(rows, "topic", weight="count"), "type"),
            "periods_returned": len(timeline),
            "aggregation": "server_side",
            "aggregated_rows": len(raw_rows),
            "duplicates_merged": len(raw_rows) - len(rows),
            "verification": dataset.verification(query, total_complaints, context.now()),
            "reliability": {
                "cached": result.cached,
                "cache_key": result.cache_key,
                "rate_limit_info": context.requester.rate_info(),
            },
        },
    )
    return add_insights(envelope, trends_311_insights)


async def handle_analyze_311_trends(arguments: Dict[str, Any], context: Optional[ToolContext] = None) -> str:
    """Handler for 311 trend analysis."""
    return await run_tool("analyze_311_trends", analyze_311_trends, Trends311Params, arguments, context)
