"""Tests for query window boundaries."""

from datetime import datetime, timedelta

import pytest

from core.time_windows import WindowKind, compute_window, window_between, window_for_days

NOW = datetime(2025, 3, 10, 15, 30, 12)


@pytest.mark.parametrize("days", [1, 7, 30, 90, 200, 365])
def test_custom_window_is_inclusive(days):
    window = compute_window("custom", days, now=NOW)

    elapsed = round((window.end - window.start) / timedelta(days=1))
    assert elapsed in (days, days + 1)
    assert (window.start.hour, window.start.minute, window.start.second) == (0, 0, 0)
    assert (window.end.hour, window.end.minute, window.end.second) == (23, 59, 59)
    assert window.start <= window.end
    assert window.days == days


@pytest.mark.parametrize("kind, days", [("90d", 90), ("12m", 365), ("365d", 365)])
def test_fixed_windows(kind, days):
    window = compute_window(kind, now=NOW)

    assert window.end == datetime(2025, 3, 10, 23, 59, 59, 999000)
    assert window.start == datetime.combine((window.end - timedelta(days=days)).date(), datetime.min.time())
    assert window.days in (days, days + 1)


@pytest.mark.parametrize("bad", [0, -5, 2.5, "30", None, True])
def test_custom_window_rejects_bad_days(bad):
    with pytest.raises(ValueError, match="positive integer"):
        compute_window("custom", bad, now=NOW)


def test_unknown_kind_raises():
    with pytest.raises(ValueError, match="Invalid window type"):
        compute_window("fortnight", now=NOW)


def test_window_for_days_picks_standard_kinds():
    assert window_for_days(90, now=NOW).kind is WindowKind.NINETY_DAYS
    assert window_for_days(365, now=NOW).kind is WindowKind.TWELVE_MONTHS
    assert window_for_days(14, now=NOW).kind is WindowKind.CUSTOM


def test_window_between_widens_to_whole_days():
    window = window_between(datetime(2025, 1, 1, 9), datetime(2025, 1, 3, 8))
    assert window.start == datetime(2025, 1, 1)
    assert window.end == datetime(2025, 1, 3, 23, 59, 59, 999000)
    assert window.days == 3

    with pytest.raises(ValueError):
        window_between(datetime(2025, 2, 1), datetime(2025, 1, 1))


def test_serialization():
    window = compute_window("custom", 7, now=NOW)
    assert window.to_dict() == {
        "start": "2025-03-03T00:00:00.000",
        "end": "2025-03-10T23:59:59.999",
        "days": 7,
        "type": "custom",
    }
    assert window.soql_bounds() == ("2025-03-03T00:00:00.000", "2025-03-10T23:59:59.999")
