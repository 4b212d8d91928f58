"""
Derived metrics over de-duplicated records.

Everything here takes the post-dedup record set. Computing these from raw
rows would make counts drift whenever Socrata returns repeated rows or two
queries overlap.
"""

import math
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

import pandas as pd

# HPD violation classes
SEVERITY_LABELS = {
    "A": "Non-hazardous",
    "B": "Hazardous",
    "C": "Immediately hazardous",
}
HAZARD_WEIGHTS = {"C": 3, "B": 2, "A": 1}
MAX_HAZARD_WEIGHT = 3

Key = Union[str, Callable[[Any], Any]]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a Socrata floating timestamp into a naive datetime (None if unusable)."""
    if value is None or value == "":
        return None
    parsed = pd.to_datetime(value, errors="coerce")
    if pd.isna(parsed):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.tz_convert(None)
    return parsed.to_pydatetime()


def _percentage(part: float, total: float) -> float:
    return round(part / total * 100, 2) if total > 0 else 0.0


# ============================================================================
# Counting
# ============================================================================

def count_by(records: Iterable[Any], key: Key, weight: Optional[Key] = None) -> Counter:
    """
    Count records per key value, skipping records whose key is missing.

    Args:
        records: Mappings (when ``key`` is a field name) or arbitrary objects
        key: Field name or callable returning the grouping value
        weight: Optional field name or callable giving each record's count
    """
    get_key = key if callable(key) else (lambda r: r.get(key))
    if weight is None:
        get_weight: Callable[[Any], Any] = lambda r: 1
    else:
        get_weight = weight if callable(weight) else (lambda r: r.get(weight))

    counts: Counter = Counter()
    for record in records:
        value = get_key(record)
        if value is None or value == "":
            continue
        counts[value] += int(get_weight(record) or 0)
    return counts


def top_counts(counts: Mapping[Any, int], label: str, n: int = 10) -> List[Dict[str, Any]]:
    """Top ``n`` entries as [{label: value, "count": count}], largest first."""
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [{label: value, "count": count} for value, count in ranked[:n]]


def coverage(records: Iterable[Any], has_value: Callable[[Any], bool], target: float = 95.0) -> Dict[str, Any]:
    """Share of records for which ``has_value`` holds, against a target percentage."""
    total = 0
    covered = 0
    for record in records:
        total += 1
        if has_value(record):
            covered += 1
    percent = _percentage(covered, total)
    return {
        "records_with_value": covered,
        "total_records": total,
        "coverage_percent": percent,
        "target": target,
        "meets_target": percent >= target,
    }


# ============================================================================
# Street closures
# ============================================================================

@dataclass(frozen=True)
class ClosureActivity:
    is_active: bool
    days_remaining: int
    duration_days: Optional[int]


def closure_activity(start: Any, end: Any, now: Optional[datetime] = None) -> ClosureActivity:
    """
    Active flag, days remaining and total duration for one closure.

    A closure is active when ``start <= now <= end``. Day counts are rounded
    up. Unparseable dates give an inactive closure with unknown duration.
    """
    now = now or datetime.now()
    start_dt = parse_timestamp(start)
    end_dt = parse_timestamp(end)
    if start_dt is None or end_dt is None:
        return ClosureActivity(is_active=False, days_remaining=0, duration_days=None)

    day = 86400.0
    is_active = start_dt <= now <= end_dt
    days_remaining = math.ceil((end_dt - now).total_seconds() / day) if is_active else 0
    duration = math.ceil((end_dt - start_dt).total_seconds() / day)
    return ClosureActivity(is_active=is_active, days_remaining=days_remaining, duration_days=duration)


# ============================================================================
# HPD severity
# ============================================================================

def severity_mix(class_counts: Mapping[str, int]) -> Dict[str, Dict[str, Any]]:
    """Count, percentage and severity label per violation class."""
    total = sum(class_counts.values())
    return {
        cls: {
            "count": count,
            "percentage": _percentage(count, total),
            "severity": SEVERITY_LABELS.get(cls, "Other"),
        }
        for cls, count in class_counts.items()
    }


def hazard_index(class_counts: Mapping[str, int]) -> float:
    """
    Weighted severity on a 0-100 scale.

    Class C counts 3, B 2, A 1, anything else 0; 100 means every violation
    is Class C.
    """
    total = sum(class_counts.values())
    score = sum(count * HAZARD_WEIGHTS.get(cls, 0) for cls, count in class_counts.items())
    return _percentage(score, total * MAX_HAZARD_WEIGHT)


def hazard_interpretation(index: float) -> str:
    if index < 33:
        return "Low severity (mostly Class A)"
    if index < 66:
        return "Moderate severity (mixed classes)"
    return "High severity (many Class B/C violations)"
