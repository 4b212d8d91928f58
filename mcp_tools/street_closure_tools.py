"""
DOT Street Closure Tools for MCP Server

These tools allow LLMs to query NYC street closures caused by construction
permits. The DOT feed repeats a closure once per permit purpose; rows for
the same segment and work period are merged into one closure with all of
its purposes.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.aggregation import closure_activity, count_by, parse_timestamp, top_counts
from core.dedup import deduplicate, key_on, merge_unique
from core.envelope import DataSource, EventType, NormalizedRecord, success_envelope
from core.errors import OpenDataError
from core.geo import DOT_BOROUGH_CODES
from core.insights import add_insights, dot_closures_insights
from core.time_windows import window_between
from core.validation import batch_validate, validate_bool, validate_borough, validate_limit, validate_string
from mcp_tools.common import ToolParams, failure_envelope, run_tool
from mcp_tools.context import ToolContext

logger = logging.getLogger(__name__)

DEDUP_FIELDS = ("segment_id", "work_start_date", "work_end_date")


@dataclass
class StreetClosureParams(ToolParams):
    borough: Any = None
    work_type: Any = None
    limit: Any = 1000
    active_only: Any = True
    use_cache: Any = True
    skip_cache: Any = False


# ============================================================================
# Row shaping
# ============================================================================

def closure_from_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """One DOT row as a closure with a single-purpose list."""
    code = row.get("borough_code")
    purpose = row.get("purpose")
    return {
        "segment_id": row.get("segmentid"),
        "work_start_date": row.get("work_start_date"),
        "work_end_date": row.get("work_end_date"),
        "on_street": row.get("onstreetname"),
        "from_street": row.get("fromstreetname"),
        "to_street": row.get("tostreetname"),
        "borough_code": code,
        "borough": DOT_BOROUGH_CODES.get(str(code or "").strip().upper(), code),
        "purposes": [purpose] if purpose else [],
        "geometry": row.get("the_geom"),
        "unique_id": row.get("uniqueid"),
    }


def merge_closures(rows: List[Dict[str, Any]], now: datetime):
    """
    Merge closure rows sharing segment + start + end and derive activity.

    Returns:
        (closures sorted soonest-ending first, DedupResult)
    """
    result = deduplicate(
        (closure_from_row(r) for r in rows),
        key_on(*DEDUP_FIELDS),
        merge_unique("purposes"),
    )

    closures = []
    for closure in result.records:
        activity = closure_activity(closure["work_start_date"], closure["work_end_date"], now)
        closures.append({
            **closure,
            "purpose_merged": "; ".join(closure["purposes"]) or "Unknown",
            "is_active": activity.is_active,
            "days_remaining": activity.days_remaining,
            "duration_days": activity.duration_days,
        })

    def end_key(closure):
        end = parse_timestamp(closure["work_end_date"])
        return (end is None, end or datetime.min)

    closures.sort(key=end_key)
    return closures, result


# ============================================================================
# Tool: Search Street Closures
# ============================================================================

def search_street_closures_tool():
    """Tool definition for searching DOT street closures."""
    return {
        "name": "search_street_closures",
        "description": (
            "Search NYC DOT street closures caused by construction permits. "
            "Duplicate rows for the same street segment and work period are merged, "
            "so counts stay stable across repeated queries. Returns active/inactive "
            "counts, days remaining, leading closure purposes and a borough breakdown."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "borough": {
                    "type": "string",
                    "description": "Borough name or code (e.g., 'MANHATTAN', 'BK', '3')"
                },
                "work_type": {
                    "type": "string",
                    "description": "Text to match in the permit purpose (e.g., 'Paving', 'Utility')"
                },
                "limit": {
                    "type": "integer",
                    "description": "Maximum raw rows to fetch before merging (default: 1000, max: 5000)",
                    "default": 1000,
                    "minimum": 1,
                    "maximum": 5000
                },
                "active_only": {
                    "type": "boolean",
                    "description": "Only closures whose work period covers today (default: true)",
                    "default": True
                },
                "use_cache": {"type": "boolean", "default": True},
                "skip_cache": {"type": "boolean", "default": False}
            },
            "required": []
        }
    }


async def search_street_closures(params: StreetClosureParams, context: ToolContext) -> Dict[str, Any]:
    validation = batch_validate({
        "borough": validate_borough(params.borough),
        "work_type": validate_string(params.work_type, "work_type", max_length=100),
        "limit": validate_limit(params.limit, max_value=5000, default=1000),
        "active_only": validate_bool(params.active_only, "active_only", True),
        "use_cache": validate_bool(params.use_cache, "use_cache", True),
        "skip_cache": validate_bool(params.skip_cache, "skip_cache", False),
    })
    if not validation.valid:
        return validation.error
    args = validation.normalized

    now = context.now()
    dataset = context.street_closures

    try:
        context.requester.check_hard_caps({"limit": args["limit"]})
        query = dataset.search_params(
            borough=args["borough"],
            work_type=args["work_type"],
            active_on=now.date() if args["active_only"] else None,
        )
        # Active status changes daily; keep it fresh
        ttl = context.requester.cache_ttls.short if args["active_only"] else None
        result = await dataset.query_all(
            query,
            max_records=args["limit"],
            ttl=ttl,
            use_cache=args["use_cache"],
            skip_cache=args["skip_cache"],
        )
    except OpenDataError as e:
        logger.error(f"Street closure query failed: {e}")
        return failure_envelope(e, context)

    rows = result.data or []
    closures, dedup = merge_closures(rows, now)

    records = [
        NormalizedRecord(
            timestamp=c["work_start_date"],
            period=None,
            geo=context.geo.enrich_dot({"borough_code": c["borough_code"], "the_geom": c["geometry"]}),
            topic=f"Street closure: {c['on_street']}",
            value=c["duration_days"],
            details={
                "segment_id": c["segment_id"],
                "on_street": c["on_street"],
                "from_street": c["from_street"],
                "to_street": c["to_street"],
                "purposes": c["purposes"],
                "purpose_merged": c["purpose_merged"],
                "work_start_date": c["work_start_date"],
                "work_end_date": c["work_end_date"],
                "is_active": c["is_active"],
                "days_remaining": c["days_remaining"],
                "duration_days": c["duration_days"],
            },
        )
        for c in closures
    ]

    active = sum(1 for c in closures if c["is_active"])
    boroughs = count_by(closures, "borough")
    purposes = count_by((p for c in closures for p in c["purposes"]), lambda p: p)

    starts = [d for d in (parse_timestamp(c["work_start_date"]) for c in closures) if d]
    ends = [d for d in (parse_timestamp(c["work_end_date"]) for c in closures) if d]
    if starts and ends and min(starts) <= max(ends):
        window = window_between(min(starts), max(ends))
    else:
        window = window_between(now, now)

    envelope = success_envelope(
        source=DataSource.DOT_CLOSURES,
        event_type=EventType.SEARCH,
        window=window,
        records=records,
        meta={
            "total_closures": len(closures),
            "active_closures": active,
            "inactive_closures": len(closures) - active,
            "raw_api_count": dedup.original_count,
            "duplicates_removed": dedup.duplicates_removed,
            "deduplication_rate": dedup.deduplication_rate,
            "deduplication_key": "segment_id + start_date + end_date",
            "borough_breakdown": top_counts(boroughs, "borough", n=len(boroughs)),
            "top_purposes": top_counts(purposes, "purpose"),
            "active_only_filter": args["active_only"],
            "work_type_filter": args["work_type"] or "ALL",
            "verification": dataset.verification(query, len(closures), now),
            "reliability": {
                "cached": result.cached,
                "cache_key": result.cache_key,
                "rate_limit_info": context.requester.rate_info(),
            },
        },
    )
    return add_insights(envelope, dot_closures_insights)


async def handle_search_street_closures(arguments: Dict[str, Any], context: Optional[ToolContext] = None) -> str:
    """Handler for searching street closures."""
    return await run_tool(
        "search_street_closures",
        search_street_closures,
        StreetClosureParams,
        arguments,
        context,
    )
