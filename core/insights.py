"""
Trend calculation and plain-English insights.

Every successful envelope can carry an ``insights`` block with a one-line
headline and up to three takeaways, so the assistant can lead with the
meaning of the numbers instead of the raw records.
"""

from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

# Percentage reported when the previous window averaged zero and the recent
# one did not.
TREND_CLAMP = 999.0


@dataclass(frozen=True)
class TrendResult:
    direction: str
    percentage_change: Optional[float]
    recent_avg: Optional[float]
    previous_avg: Optional[float]

    @property
    def available(self) -> bool:
        return self.percentage_change is not None

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return asdict(self) if self.available else None


TREND_UNAVAILABLE = TrendResult(
    direction="unavailable",
    percentage_change=None,
    recent_avg=None,
    previous_avg=None,
)


def calculate_trend(series: Sequence[float], span: int = 7) -> TrendResult:
    """
    Compare the last ``span`` periods with the ``span`` periods before them.

    Args:
        series: Chronologically sorted per-period counts
        span: Periods per comparison window

    Returns:
        TrendResult; TREND_UNAVAILABLE when fewer than 2 * span periods exist
    """
    if len(series) < span * 2:
        return TREND_UNAVAILABLE

    recent = series[-span:]
    previous = series[-span * 2:-span]
    recent_avg = sum(recent) / span
    previous_avg = sum(previous) / span

    if previous_avg > 0:
        change = (recent_avg - previous_avg) / previous_avg * 100
    elif recent_avg > 0:
        change = TREND_CLAMP
    else:
        change = 0.0

    change = round(change, 2)
    if change > 0:
        direction = "increasing"
    elif change < 0:
        direction = "decreasing"
    else:
        direction = "stable"

    return TrendResult(
        direction=direction,
        percentage_change=change,
        recent_avg=round(recent_avg, 2),
        previous_avg=round(previous_avg, 2),
    )


# ============================================================================
# Insight generators
# ============================================================================

def _pct(part: float, whole: float) -> str:
    return f"{part / whole * 100:.0f}" if whole else "0"


def search_311_insights(envelope: Mapping[str, Any]) -> Dict[str, Any]:
    count = envelope["count"]
    meta = envelope.get("meta") or {}
    days = (envelope.get("window") or {}).get("days") or 0
    borough = (meta.get("filters") or {}).get("borough") or "NYC"
    if borough == "ALL":
        borough = "NYC"
    top = (meta.get("top_complaint_types") or [None])[0]

    headline = f"Found {count:,} complaints in {borough}"
    if days > 0:
        headline += f" over {days} days"
    if top:
        headline += f': "{top["type"]}" leads with {top["count"]} reports'

    takeaways: List[str] = []
    if count > 0:
        per_day = f"{count / days:.1f}" if days > 0 else str(count)
        takeaways.append(f"{per_day} complaints per day on average")
    if top and count > 0:
        takeaways.append(f'{_pct(top["count"], count)}% of complaints are "{top["type"]}"')

    nta_coverage = meta.get("nta_coverage")
    if nta_coverage:
        percent = nta_coverage["coverage_percent"]
        neighborhoods = len(meta.get("top_ntas") or [])
        if percent >= nta_coverage.get("target", 95.0):
            takeaways.append(
                f"Geographic data available for {percent}% of records across {neighborhoods} neighborhoods"
            )
        else:
            takeaways.append(f"{percent}% geographic coverage ({neighborhoods} neighborhoods identified)")

    return {"headline": headline, "takeaways": takeaways}


def trends_311_insights(envelope: Mapping[str, Any]) -> Dict[str, Any]:
    count = envelope["count"]
    meta = envelope.get("meta") or {}
    trend = meta.get("trend")
    group_by = meta.get("group_by") or "day"
    borough = meta.get("borough") or "NYC"
    if borough == "ALL":
        borough = "NYC"

    headline = f"{count:,} complaints in {borough}"
    if trend:
        headline += f" {trend['direction']} by {abs(trend['percentage_change'])}%"

    takeaways: List[str] = []
    if trend:
        if trend["direction"] == "increasing":
            takeaways.append(
                f"Volume rising from {trend['previous_avg']} to {trend['recent_avg']} complaints per {group_by}"
            )
        elif trend["direction"] == "decreasing":
            takeaways.append(
                f"Volume falling from {trend['previous_avg']} to {trend['recent_avg']} complaints per {group_by}"
            )
        else:
            takeaways.append(f"Stable at ~{trend['recent_avg']} complaints per {group_by}")

    top = (meta.get("top_types") or [None])[0]
    if top and count > 0:
        takeaways.append(f'"{top["type"]}" accounts for {_pct(top["count"], count)}% ({top["count"]:,} complaints)')

    periods = meta.get("periods_returned") or 0
    if periods > 0:
        takeaways.append(f"{periods} {group_by} periods analyzed using server-side aggregation")

    return {"headline": headline, "takeaways": takeaways}


def hpd_violations_insights(envelope: Mapping[str, Any]) -> Dict[str, Any]:
    count = envelope["count"]
    meta = envelope.get("meta") or {}
    mix = meta.get("severity_mix") or {}
    index = meta.get("hazard_index") or 0
    level = meta.get("hazard_interpretation") or "Unknown"

    takeaways: List[str] = []
    class_b = (mix.get("B") or {}).get("percentage", 0)
    class_c = (mix.get("C") or {}).get("percentage", 0)
    if class_b > 0 or class_c > 0:
        takeaways.append(
            f"{class_b + class_c:.0f}% are hazardous (Class B: {class_b:.0f}%, Class C: {class_c:.0f}%)"
        )
    if mix:
        takeaways.append(f"Hazard index: {index}/100, {level.lower()}")

    top = (meta.get("borough_breakdown") or [None])[0]
    if top:
        takeaways.append(
            f"{top['borough_name']} has {top['percentage']:.0f}% of violations ({top['count']:,})"
        )

    return {"headline": f"{count:,} housing violations: {level}", "takeaways": takeaways}


def dot_closures_insights(envelope: Mapping[str, Any]) -> Dict[str, Any]:
    count = envelope["count"]
    meta = envelope.get("meta") or {}
    active = meta.get("active_closures") or 0
    rate = meta.get("deduplication_rate") or 0

    takeaways: List[str] = []
    if rate > 0:
        takeaways.append(
            f"Removed {meta.get('duplicates_removed', 0)} duplicates ({rate:.0f}% de-duplication rate)"
        )
    top = (meta.get("top_purposes") or [None])[0]
    if top:
        takeaways.append(f'"{top["purpose"]}" is the leading reason ({top["count"]} closures)')
    boroughs = meta.get("borough_breakdown") or []
    if boroughs:
        takeaways.append(
            f"Affecting {len(boroughs)} boroughs; {boroughs[0]['borough']} has most ({boroughs[0]['count']})"
        )

    return {
        "headline": f"{active} active street closures ({count} total after de-duplication)",
        "takeaways": takeaways,
    }


def generic_insights(envelope: Mapping[str, Any], data_type: str = "results") -> Dict[str, Any]:
    count = envelope.get("count") or 0
    takeaways: List[str] = []
    if count > 0:
        takeaways.append(f"{count} records returned")
        meta_keys = list((envelope.get("meta") or {}).keys())
        if meta_keys:
            takeaways.append(f"Includes: {', '.join(meta_keys[:3])}")
    return {"headline": f"Found {count:,} {data_type}", "takeaways": takeaways}


def add_insights(
    envelope: Dict[str, Any],
    generator: Callable[[Mapping[str, Any]], Dict[str, Any]] = generic_insights,
) -> Dict[str, Any]:
    """Return a copy of ``envelope`` with an ``insights`` block."""
    if not envelope.get("success"):
        error = envelope.get("error") or {}
        insights = {
            "headline": f"Error: {error.get('type') or 'Unknown error'}",
            "takeaways": [
                error.get("message") or "An error occurred",
                error.get("guidance") or "Check query parameters and try again",
            ],
        }
    else:
        insights = generator(envelope)
    return {**envelope, "insights": insights}


def format_insights(insights: Mapping[str, Any]) -> str:
    """Render insights as plain text."""
    lines = [insights["headline"], ""]
    takeaways = insights.get("takeaways") or []
    if takeaways:
        lines.append("Key Takeaways:")
        lines.extend(f"  {i}. {t}" for i, t in enumerate(takeaways, 1))
    return "\n".join(lines)
