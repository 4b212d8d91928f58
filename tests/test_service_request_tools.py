"""Tests for the 311 search and trend tools."""

import asyncio
import json
from datetime import date, timedelta

import pytest

from core.envelope import validate_envelope
from core.rate_limits import HardCaps
from mcp_tools.service_request_tools import (
    Search311Params,
    Trends311Params,
    analyze_311_trends,
    handle_search_311_complaints,
    search_311_complaints,
)

from conftest import FakeResponse, page_responder

COMPLAINTS = [
    {
        "unique_key": "100",
        "created_date": "2025-01-04T22:15:00.000",
        "complaint_type": "Noise - Residential",
        "descriptor": "Loud Music/Party",
        "borough": "BROOKLYN",
        "community_board": "14 BROOKLYN",
        "latitude": "40.6401",
        "longitude": "-73.9630",
    },
    {
        "unique_key": "101",
        "created_date": "2025-01-04T09:00:00.000",
        "complaint_type": "HEAT/HOT WATER",
        "borough": "BROOKLYN",
    },
    {
        "unique_key": "100",
        "created_date": "2025-01-04T22:15:00.000",
        "complaint_type": "Noise - Residential",
        "borough": "BROOKLYN",
        "community_board": "14 BROOKLYN",
    },
]


def search(context, **arguments):
    return asyncio.run(search_311_complaints(Search311Params.from_arguments(arguments), context))


def trends(context, **arguments):
    return asyncio.run(analyze_311_trends(Trends311Params.from_arguments(arguments), context))


# ============================================================================
# Search
# ============================================================================

def test_search_dedups_and_enriches(make_context):
    context, session = make_context(page_responder(COMPLAINTS))
    envelope = search(context, borough="bk", days=7)

    assert validate_envelope(envelope)
    assert envelope["count"] == 2
    assert envelope["window"]["days"] == 7

    meta = envelope["meta"]
    assert meta["deduplication"] == {"key": "unique_key", "original_count": 3, "duplicates_removed": 1}
    assert meta["nta_coverage"]["records_with_nta"] == 1
    assert meta["nta_coverage"]["coverage_percent"] == 50.0
    assert meta["nta_coverage"]["meets_target"] is False
    assert meta["top_ntas"] == [{"nta": "BK42", "count": 1}]
    assert meta["filters"] == {"complaint_type": "ALL", "borough": "BROOKLYN"}

    first = envelope["records"][0]
    assert first["geo"]["community_district"] == "314"
    assert first["topic"] == "Noise - Residential"

    params = session.calls[0]["params"]
    assert "borough = 'BROOKLYN'" in params["$where"]
    assert "created_date >= '2024-12-29T00:00:00.000'" in params["$where"]
    assert params["$order"] == "created_date DESC"


def test_complaint_type_is_escaped(make_context):
    context, session = make_context(page_responder([]))
    envelope = search(context, complaint_type="Mayor's Office")

    assert envelope["count"] == 0
    assert "complaint_type = 'Mayor''s Office'" in session.calls[0]["params"]["$where"]


def test_explicit_date_range(make_context):
    context, session = make_context(page_responder([]))
    envelope = search(context, start_date="2024-12-01", end_date="2024-12-31")

    assert envelope["window"]["start"] == "2024-12-01T00:00:00.000"
    assert envelope["window"]["days"] == 31

    reversed_range = search(context, start_date="2025-01-31", end_date="2025-01-01")
    assert reversed_range["error"]["type"] == "INVALID_INPUT"


def test_validation_failure_sends_no_request(make_context):
    context, session = make_context(page_responder(COMPLAINTS))
    envelope = search(context, borough="Jersey City", days=400)

    assert envelope["error"]["type"] == "VALIDATION_ERROR"
    assert {e["param"] for e in envelope["error"]["details"]["errors"]} == {"borough", "days"}
    assert session.calls == []


def test_hard_cap_rejects_before_fetching(make_context):
    context, session = make_context(page_responder(COMPLAINTS), hard_caps=HardCaps(max_limit=50))
    envelope = search(context, limit=100)

    assert envelope["error"]["type"] == "RATE_LIMIT"
    assert envelope["error"]["details"]["violations"][0]["param"] == "limit"
    assert session.calls == []


def test_repeat_query_is_served_from_cache(make_context):
    context, session = make_context(page_responder(COMPLAINTS))

    first = json.loads(asyncio.run(handle_search_311_complaints({"days": 7}, context)))
    second = json.loads(asyncio.run(handle_search_311_complaints({"days": 7}, context)))

    assert len(session.calls) == 1
    assert first["meta"]["reliability"]["cached"] is False
    assert second["meta"]["reliability"]["cached"] is True
    assert second["count"] == first["count"]

    asyncio.run(handle_search_311_complaints({"days": 7, "skip_cache": True}, context))
    assert len(session.calls) == 2


def test_server_errors_are_retried_then_reported(make_context, sleeps):
    context, session = make_context(lambda url, params: FakeResponse({"message": "boom"}, status_code=500))
    envelope = json.loads(asyncio.run(handle_search_311_complaints({"days": 7}, context)))

    assert len(session.calls) == 3
    assert len(sleeps) == 2
    assert envelope["error"]["type"] == "API_ERROR"
    assert envelope["error"]["details"]["status"] == 500
    assert envelope["error"]["details"]["rate_limit_info"]["current_rate"]["count"] == 3


def test_full_year_lookback_is_within_hard_cap(make_context):
    context, session = make_context(page_responder(COMPLAINTS))
    envelope = search(context, days=365)

    assert envelope["success"] is True
    assert envelope["window"]["type"] == "12m"
    assert envelope["window"]["days"] in (365, 366)
    assert len(session.calls) == 1


def test_date_range_may_span_one_day_past_hard_cap(make_context):
    context, session = make_context(page_responder([]))

    leap_year = search(context, start_date="2024-01-01", end_date="2024-12-31")
    assert leap_year["success"] is True
    assert leap_year["window"]["days"] == 366

    too_long = search(context, start_date="2023-12-31", end_date="2024-12-31")
    assert too_long["error"]["type"] == "RATE_LIMIT"
    assert too_long["error"]["details"]["violations"][0]["param"] == "days"
    assert len(session.calls) == 1


def test_search_reports_provenance_and_aggregation_hint(make_context):
    context, session = make_context(page_responder(COMPLAINTS))

    envelope = search(context, days=7)
    verification = envelope["meta"]["verification"]
    assert verification["dataset_id"] == "erm2-nwe9"
    assert verification["api_endpoint"] == "https://data.example.test/resource/erm2-nwe9.json"
    assert verification["dataset_url"] == "https://data.cityofnewyork.us/d/erm2-nwe9"
    assert verification["query_parameters"]["$order"] == "created_date DESC"
    assert verification["record_count"] == 2
    assert verification["data_freshness"] == "2025-01-05T12:00:00"
    assert envelope["meta"]["aggregation_recommended"] is False

    large = search(context, days=7, limit=5000)
    assert large["meta"]["aggregation_recommended"] is True


# ============================================================================
# Trends
# ============================================================================

def daily_rows():
    rows = []
    day = date(2024, 12, 23)
    for offset in range(14):
        current = day + timedelta(days=offset)
        count = 2 if offset < 7 else 3
        stamp = f"{current.isoformat()}T00:00:00.000"
        if current == date(2025, 1, 5):
            rows.append({"period": stamp, "complaint_type": "Noise", "count": "1"})
            rows.append({"period": stamp, "complaint_type": "Noise", "count": "2"})
        else:
            rows.append({"period": stamp, "complaint_type": "Noise", "count": str(count)})
    rows.append({"period": "garbage", "complaint_type": "Noise", "count": "50"})
    return rows


def test_daily_trend_fills_gaps_and_merges_duplicates(make_context):
    context, session = make_context(page_responder(daily_rows()))
    envelope = trends(context, days=14, borough="Queens")

    assert validate_envelope(envelope)
    assert envelope["event_type"] == "trend_analysis"
    assert envelope["count"] == 35

    records = envelope["records"]
    assert len(records) == 15
    assert records[0]["period"] == "2024-12-22"
    assert records[0]["value"] == 0
    assert records[-1]["period"] == "2025-01-05"
    assert records[-1]["value"] == 3
    assert records[-1]["details"]["top_types"] == [{"type": "Noise", "count": 3}]
    assert records[0]["geo"]["borough_id"] == "4"

    meta = envelope["meta"]
    assert meta["trend"]["direction"] == "increasing"
    assert meta["trend"]["percentage_change"] == 50.0
    assert meta["aggregated_rows"] == 15
    assert meta["duplicates_merged"] == 1
    assert meta["top_types"] == [{"type": "Noise", "count": 35}]

    params = session.calls[0]["params"]
    assert params["$group"] == "period, complaint_type"
    assert "borough = 'QUEENS'" in params["$where"]


def test_weekly_trend_groups_monday_to_sunday(make_context):
    context, _ = make_context(page_responder(daily_rows()))
    envelope = trends(context, days=14, group_by="WEEK")

    assert [r["period"] for r in envelope["records"]] == ["2024-12-16", "2024-12-23", "2024-12-30"]
    assert [r["value"] for r in envelope["records"]] == [0, 14, 21]
    assert envelope["meta"]["trend"] is None


def test_monthly_trend(make_context):
    context, _ = make_context(page_responder(daily_rows()))
    envelope = trends(context, days=14, group_by="month")

    assert [(r["period"], r["value"]) for r in envelope["records"]] == [
        ("2024-12-01", 20),
        ("2025-01-01", 15),
    ]


def test_empty_trend(make_context):
    context, _ = make_context(page_responder([]))
    envelope = trends(context, days=14)

    assert envelope["count"] == 0
    assert all(r["value"] == 0 for r in envelope["records"])
    assert envelope["meta"]["trend"]["direction"] == "stable"


@pytest.mark.parametrize("group_by", ["year", "hour"])
def test_bad_group_by(make_context, group_by):
    context, session = make_context(page_responder([]))
    envelope = trends(context, group_by=group_by)

    assert envelope["error"]["type"] == "VALIDATION_ERROR"
    assert session.calls == []
