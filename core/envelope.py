"""
Standard output envelope for all NYC Open Data tools.

Every tool returns the same top-level shape so results from different
datasets can be compared and joined without per-tool parsing:

    success:    {success, source, event_type, window, count, records, meta, insights?}
    failure:    {success: False, error: {type, message, details, guidance}}

For search envelopes ``count`` equals ``len(records)``. Aggregation envelopes
report the sum of the underlying event counts instead.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence

from core.errors import RateLimitExceeded, TransientFailure, UpstreamError
from core.geo import GeoInfo
from core.time_windows import QueryWindow


class ErrorType(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    API_ERROR = "API_ERROR"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"


class EventType(str, Enum):
    SEARCH = "search"
    TREND_ANALYSIS = "trend_analysis"
    AGGREGATION = "aggregation"


class DataSource(str, Enum):
    NYC_311 = "311_service_requests"
    HPD_VIOLATIONS = "hpd_violations"
    DOT_CLOSURES = "dot_street_closures"


# ============================================================================
# Records
# ============================================================================

@dataclass(frozen=True)
class NormalizedRecord:
    """
    Canonical per-entity record produced from one raw API row.

    Attributes:
        timestamp: ISO timestamp of the event (None for period rollups)
        period: Period label for aggregated rows (e.g. '2025-10-01')
        geo: Enriched geography
        topic: What the record is about (complaint type, violation class, ...)
        value: Count or numeric measure
        details: Source-specific fields
    """
    timestamp: Optional[str]
    period: Optional[str]
    geo: GeoInfo
    topic: Optional[str]
    value: Any
    details: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "period": self.period,
            "geo": self.geo.to_dict(),
            "topic": self.topic,
            "value": self.value,
            "details": dict(self.details),
        }


def _record_to_dict(record: Any) -> Any:
    if isinstance(record, NormalizedRecord):
        return record.to_dict()
    return record


# ============================================================================
# Builders
# ============================================================================

def success_envelope(
    source: str,
    event_type: str,
    window: Optional[QueryWindow],
    records: Sequence[Any],
    meta: Optional[Dict[str, Any]] = None,
    count: Optional[int] = None,
    insights: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Create a standard success envelope.

    Args:
        source: Data source identifier (see DataSource)
        event_type: Kind of result (see EventType)
        window: Time window the query covered
        records: NormalizedRecord instances or plain dicts
        meta: Tool-specific metadata
        count: Event count for aggregations; defaults to len(records)
        insights: Optional {headline, takeaways}

    Returns:
        Envelope dictionary ready for JSON serialization
    """
    rows = [_record_to_dict(r) for r in records]
    envelope = {
        "success": True,
        "source": getattr(source, "value", source),
        "event_type": getattr(event_type, "value", event_type),
        "window": window.to_dict() if window is not None else None,
        "count": len(rows) if count is None else count,
        "records": rows,
        "meta": meta or {},
    }
    if insights is not None:
        envelope["insights"] = insights
    return envelope


def error_envelope(
    error_type: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    guidance: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a standard error envelope."""
    return {
        "success": False,
        "error": {
            "type": getattr(error_type, "value", error_type),
            "message": message,
            "details": details or {},
            "guidance": guidance,
        },
    }


def upstream_error_envelope(
    exc: BaseException,
    rate_info: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Turn a failed request into an error envelope.

    The envelope carries the root cause plus the advisory rate-limit context
    so the caller can tell whether a token or a narrower query would help.
    """
    details: Dict[str, Any] = {"rate_limit_info": rate_info or {}}

    if isinstance(exc, RateLimitExceeded):
        details["violations"] = exc.violations
        return error_envelope(
            ErrorType.RATE_LIMIT,
            str(exc),
            details=details,
            guidance="Narrow the query: use fewer days, a smaller limit, or an aggregated query.",
        )

    if isinstance(exc, UpstreamError):
        details["status"] = exc.status_code
        if exc.status_code == 429:
            return error_envelope(
                ErrorType.RATE_LIMIT,
                exc.message,
                details=details,
                guidance=(
                    "Rate limit exceeded. Configure a Socrata app token for higher limits, "
                    "retry later, or use an aggregated query."
                ),
            )
        if exc.status_code == 404:
            return error_envelope(
                ErrorType.NOT_FOUND,
                exc.message,
                details=details,
                guidance="The dataset or resource was not found. Check the dataset identifier.",
            )
        return error_envelope(
            ErrorType.API_ERROR,
            exc.message,
            details=details,
            guidance=(
                "Check your query parameters. If the error persists, the Socrata API "
                "may be experiencing issues; retry later."
            ),
        )

    if isinstance(exc, TransientFailure):
        return error_envelope(
            ErrorType.TIMEOUT,
            str(exc),
            details=details,
            guidance="The open-data API did not respond. Retry later or narrow the query.",
        )

    return error_envelope(
        ErrorType.API_ERROR,
        str(exc) or exc.__class__.__name__,
        details=details,
        guidance="Unexpected failure while querying the open-data API. Retry later.",
    )


def validate_envelope(envelope: Mapping[str, Any]) -> bool:
    """Check that an envelope has the standard structure."""
    if not envelope.get("success"):
        error = envelope.get("error") or {}
        return bool(error.get("type") and error.get("message"))

    window = envelope.get("window")
    return bool(
        envelope.get("source")
        and envelope.get("event_type")
        and window
        and window.get("start")
        and window.get("end")
        and isinstance(envelope.get("count"), int)
        and isinstance(envelope.get("records"), list)
        and envelope.get("meta") is not None
    )
