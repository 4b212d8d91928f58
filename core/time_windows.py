"""
Standard time windows for NYC Open Data queries.

Windows are inclusive calendar ranges: they start at 00:00:00.000 and end
at 23:59:59.999 of the current day. Measured in elapsed time a 90-day
window therefore covers 90 or 91 days; callers compare with that tolerance.
"""

import math
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Tuple

ONE_DAY = timedelta(days=1)
END_OF_DAY = time(23, 59, 59, 999000)


class WindowKind(str, Enum):
    NINETY_DAYS = "90d"
    TWELVE_MONTHS = "12m"
    CUSTOM = "custom"


WINDOW_DAYS = {
    WindowKind.NINETY_DAYS: 90,
    WindowKind.TWELVE_MONTHS: 365,
}

_KIND_ALIASES = {"365d": WindowKind.TWELVE_MONTHS}


@dataclass(frozen=True)
class QueryWindow:
    start: datetime
    end: datetime
    days: int
    kind: WindowKind

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.isoformat(timespec="milliseconds"),
            "end": self.end.isoformat(timespec="milliseconds"),
            "days": self.days,
            "type": self.kind.value,
        }

    def soql_bounds(self) -> Tuple[str, str]:
        """Start/end as Socrata floating timestamps."""
        fmt = "%Y-%m-%dT%H:%M:%S.%f"
        return self.start.strftime(fmt)[:-3], self.end.strftime(fmt)[:-3]

    def format(self) -> str:
        return f"{self.start:%Y-%m-%d} to {self.end:%Y-%m-%d} ({self.days} days)"


def _end_of_today(now: Optional[datetime]) -> datetime:
    now = now or datetime.now()
    return datetime.combine(now.date(), END_OF_DAY)


def _start_days_before(end: datetime, days: int) -> datetime:
    return datetime.combine((end - timedelta(days=days)).date(), time.min)


def compute_window(
    kind: Any = WindowKind.NINETY_DAYS,
    explicit_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> QueryWindow:
    """
    Compute a standard query window.

    Args:
        kind: '90d', '12m' (alias '365d') or 'custom'
        explicit_days: Day count, required for custom windows
        now: Reference moment (defaults to the current local time)

    Returns:
        QueryWindow ending today at 23:59:59.999

    Raises:
        ValueError: For unknown kinds or a non-positive/non-integer day count
    """
    try:
        kind = _KIND_ALIASES.get(kind) or WindowKind(kind)
    except ValueError:
        raise ValueError(f"Invalid window type: {kind!r}. Use '90d', '12m' or 'custom'") from None

    end = _end_of_today(now)

    if kind is WindowKind.CUSTOM:
        if isinstance(explicit_days, bool) or not isinstance(explicit_days, int) or explicit_days <= 0:
            raise ValueError(f"Days must be a positive integer, got: {explicit_days!r}")
        return QueryWindow(
            start=_start_days_before(end, explicit_days),
            end=end,
            days=explicit_days,
            kind=kind,
        )

    start = _start_days_before(end, WINDOW_DAYS[kind])
    return QueryWindow(
        start=start,
        end=end,
        days=math.ceil((end - start) / ONE_DAY),
        kind=kind,
    )


def window_for_days(days: int, now: Optional[datetime] = None) -> QueryWindow:
    """Use the standard window when the day count matches one, else a custom window."""
    for kind, kind_days in WINDOW_DAYS.items():
        if days == kind_days:
            return compute_window(kind, now=now)
    return compute_window(WindowKind.CUSTOM, days, now=now)


def window_between(start: datetime, end: datetime) -> QueryWindow:
    """
    Custom window for an explicit date range.

    Both ends are widened to whole days; a reversed range raises ValueError.
    """
    start = datetime.combine(start.date(), time.min)
    end = datetime.combine(end.date(), END_OF_DAY)
    if start > end:
        raise ValueError(f"start_date {start:%Y-%m-%d} is after end_date {end:%Y-%m-%d}")
    return QueryWindow(
        start=start,
        end=end,
        days=math.ceil((end - start) / ONE_DAY),
        kind=WindowKind.CUSTOM,
    )
