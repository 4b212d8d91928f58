"""
HPD Housing Violation Tools for MCP Server

These tools allow LLMs to query NYC housing maintenance code violations.
The default mode aggregates on the server (counts by class and borough) and
reports a severity mix and hazard index; raw mode returns individual
violations with the same metrics recomputed on the de-duplicated set.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.aggregation import count_by, hazard_index, hazard_interpretation, severity_mix, top_counts
from core.dedup import deduplicate, key_on
from core.envelope import DataSource, EventType, NormalizedRecord, success_envelope
from core.errors import OpenDataError
from core.geo import GeoInfo, borough_id_for, borough_name_for
from core.insights import add_insights, hpd_violations_insights
from core.rate_limits import should_use_aggregation
from core.time_windows import QueryWindow, WindowKind, window_for_days
from core.validation import (
    batch_validate,
    validate_bool,
    validate_borough,
    validate_days,
    validate_limit,
    validate_string,
)
from datasets.housing_violations import HousingViolationsDataset
from mcp_tools.common import ToolParams, failure_envelope, run_tool
from mcp_tools.context import ToolContext

logger = logging.getLogger(__name__)


@dataclass
class HPDViolationParams(ToolParams):
    borough: Any = None
    status: Any = None
    days: Any = 365
    limit: Any = 100
    aggregated: Any = True
    use_cache: Any = True
    skip_cache: Any = False


def search_hpd_violations_tool():
    """Tool definition for searching HPD housing violations."""
    return {
        "name": "search_hpd_violations",
        "description": (
            "Search NYC HPD housing maintenance code violations. By default returns "
            "server-side aggregated counts by violation class (A non-hazardous, "
            "B hazardous, C immediately hazardous) and borough, with a 0-100 hazard "
            "index. Set aggregated=false for individual violations."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "borough": {
                    "type": "string",
                    "description": "Borough name or code (e.g., 'BRONX', 'MN', '2')"
                },
                "status": {
                    "type": "string",
                    "description": "Violation status (e.g., 'Open', 'Close')"
                },
                "days": {
                    "type": "integer",
                    "description": "Number of days of inspections to include (default: 365, max: 365)",
                    "default": 365,
                    "minimum": 1,
                    "maximum": 365
                },
                "limit": {
                    "type": "integer",
                    "description": "Maximum violations in raw mode (default: 100, max: 10000)",
                    "default": 100,
                    "minimum": 1,
                    "maximum": 10000
                },
                "aggregated": {
                    "type": "boolean",
                    "description": "Aggregate on the server (default: true)",
                    "default": True
                },
                "use_cache": {"type": "boolean", "default": True},
                "skip_cache": {"type": "boolean", "default": False}
            },
            "required": []
        }
    }


def _class_breakdown(mix: Dict[str, Dict[str, Any]]):
    return [
        {"class": cls, "severity": m["severity"], "count": m["count"], "percentage": m["percentage"]}
        for cls, m in mix.items()
    ]


async def _aggregated_violations(
    args: Dict[str, Any],
    window: QueryWindow,
    context: ToolContext,
) -> Dict[str, Any]:
    dataset = context.housing_violations
    class_query = dataset.class_counts_params(window, args["borough"], args["status"])
    borough_query = dataset.borough_counts_params(window, args["borough"], args["status"])
    # A year of counts barely moves between queries
    ttl = context.requester.cache_ttls.long if window.kind is WindowKind.TWELVE_MONTHS else None
    class_result, borough_result = await asyncio.gather(
        dataset.query(
            class_query,
            ttl=ttl,
            use_cache=args["use_cache"],
            skip_cache=args["skip_cache"],
        ),
        dataset.query(
            borough_query,
            ttl=ttl,
            use_cache=args["use_cache"],
            skip_cache=args["skip_cache"],
        ),
    )

    class_counts = HousingViolationsDataset.class_counts(class_result.data or [])
    total = sum(class_counts.values())
    mix = severity_mix(class_counts)
    index = hazard_index(class_counts)

    borough_breakdown = []
    for row in HousingViolationsDataset.borough_counts(borough_result.data or []).to_dict("records"):
        count = int(row["count"])
        borough_breakdown.append({
            "borough_id": row["boroid"],
            "borough_name": row["boro"] or borough_name_for(row["boroid"]),
            "count": count,
            "percentage": round(count / total * 100, 2) if total else 0.0,
        })

    borough = args["borough"]
    geo = GeoInfo(borough=borough or "ALL", borough_id=borough_id_for(borough))
    period = f"{window.start:%Y-%m-%d} to {window.end:%Y-%m-%d}"
    breakdown = _class_breakdown(mix)
    records = [
        NormalizedRecord(
            timestamp=None,
            period=period,
            geo=geo,
            topic=f"Class {item['class']} - {item['severity']}",
            value=item["count"],
            details={"class": item["class"], "severity": item["severity"], "percentage": item["percentage"]},
        )
        for item in breakdown
    ]

    return success_envelope(
        source=DataSource.HPD_VIOLATIONS,
        event_type=EventType.AGGREGATION,
        window=window,
        records=records,
        count=total,
        meta={
            "aggregation": "server_side",
            "severity_mix": mix,
            "class_breakdown": breakdown,
            "borough_breakdown": borough_breakdown,
            "hazard_index": index,
            "hazard_interpretation": hazard_interpretation(index),
            "status_filter": args["status"] or "ALL",
            "verification": dataset.verification([class_query, borough_query], total, context.now()),
            "reliability": {
                "cached": class_result.cached and borough_result.cached,
                "rate_limit_info": context.requester.rate_info(),
            },
        },
    )


async def _raw_violations(
    args: Dict[str, Any],
    window: QueryWindow,
    context: ToolContext,
) -> Dict[str, Any]:
    dataset = context.housing_violations
    query = dataset.raw_params(window, args["borough"], args["status"])
    result = await dataset.query_all(
        query,
        max_records=args["limit"],
        use_cache=args["use_cache"],
        skip_cache=args["skip_cache"],
    )

    dedup = deduplicate(result.data or [], key_on("violationid"))
    violations = dedup.records

    # Metrics come from the de-duplicated rows only
    class_counts = dict(count_by(violations, lambda v: v.get("class") or "Unknown"))
    mix = severity_mix(class_counts)
    index = hazard_index(class_counts)
    boroughs = count_by(violations, "boro")

    records = []
    for v in violations:
        description = v.get("novdescription") or "N/A"
        records.append(NormalizedRecord(
            timestamp=v.get("inspectiondate"),
            period=None,
            geo=context.geo.enrich_hpd(v),
            topic=f"Class {v.get('class')} - {description[:100]}",
            value=1,
            details={
                "violation_id": v.get("violationid"),
                "building_id": v.get("buildingid"),
                "bin": v.get("bin"),
                "class": v.get("class"),
                "address": f"{v.get('housenumber') or ''} {v.get('streetname') or ''}, {v.get('boro') or ''}".strip(),
                "apartment": v.get("apartment"),
                "inspection_date": v.get("inspectiondate"),
                "status": v.get("violationstatus"),
                "description": v.get("novdescription"),
                "nov_issued_date": v.get("novissueddate"),
            },
        ))

    total = len(violations)
    return success_envelope(
        source=DataSource.HPD_VIOLATIONS,
        event_type=EventType.SEARCH,
        window=window,
        records=records,
        meta={
            "aggregation": "raw",
            "limit": args["limit"],
            "aggregation_recommended": should_use_aggregation(args["limit"], context.requester.hard_caps),
            "status_filter": args["status"] or "ALL",
            "severity_mix": mix,
            "class_breakdown": _class_breakdown(mix),
            "borough_breakdown": [
                {"borough_name": b["boro"], "count": b["count"],
                 "percentage": round(b["count"] / total * 100, 2) if total else 0.0}
                for b in top_counts(boroughs, "boro", n=len(boroughs))
            ],
            "hazard_index": index,
            "hazard_interpretation": hazard_interpretation(index),
            "deduplication": {
                "key": "violationid",
                "original_count": dedup.original_count,
                "duplicates_removed": dedup.duplicates_removed,
            },
            "verification": dataset.verification(query, total, context.now()),
            "reliability": {
                "cached": result.cached,
                "cache_key": result.cache_key,
                "rate_limit_info": context.requester.rate_info(),
            },
        },
    )


async def search_hpd_violations(params: HPDViolationParams, context: ToolContext) -> Dict[str, Any]:
    validation = batch_validate({
        "borough": validate_borough(params.borough),
        "status": validate_string(params.status, "status", max_length=50),
        "days": validate_days(params.days, default=365),
        "limit": validate_limit(params.limit, max_value=10000, default=100),
        "aggregated": validate_bool(params.aggregated, "aggregated", True),
        "use_cache": validate_bool(params.use_cache, "use_cache", True),
        "skip_cache": validate_bool(params.skip_cache, "skip_cache", False),
    })
    if not validation.valid:
        return validation.error
    args = validation.normalized

    window = window_for_days(args["days"], now=context.now())

    try:
        if args["aggregated"]:
            context.requester.check_hard_caps({"days": args["days"]}, aggregated=True)
            envelope = await _aggregated_violations(args, window, context)
        else:
            context.requester.check_hard_caps({"days": args["days"], "limit": args["limit"]})
            envelope = await _raw_violations(args, window, context)
    except OpenDataError as e:
        logger.error(f"HPD violation query failed: {e}")
        return failure_envelope(e, context)

    return add_insights(envelope, hpd_violations_insights)


async def handle_search_hpd_violations(arguments: Dict[str, Any], context: Optional[ToolContext] = None) -> str:
    """Handler for searching HPD violations."""
    return await run_tool("search_hpd_violations", search_hpd_violations, HPDViolationParams, arguments, context)
