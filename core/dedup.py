"""
De-duplication for open-data records.

Socrata feeds repeat rows: overlapping queries, batch re-publication and
one-row-per-purpose closures all produce several rows for one logical
entity. Rows sharing a DedupKey collapse into the first occurrence, with
later rows merged in through a caller-supplied merge function.

Key equality is strict on both value and type: 123 and "123" are distinct
keys. Normalize key types upstream if a dataset mixes them. Rows without a
key are always kept, never merged.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

MergeFn = Callable[[Any, Any], Any]
KeyFn = Callable[[Any], Optional["DedupKey"]]


@dataclass(frozen=True)
class DedupKey:
    """Ordered tuple of key parts; each part is tagged with its type."""
    parts: Tuple[Tuple[str, Any], ...]

    @classmethod
    def of(cls, *values: Any) -> Optional["DedupKey"]:
        """Build a key, or None if any part is missing (None or empty string)."""
        if not values or any(v is None or v == "" for v in values):
            return None
        return cls(tuple((type(v).__name__, v) for v in values))

    def __str__(self) -> str:
        return "|".join(str(value) for _, value in self.parts)


@dataclass
class DedupResult:
    records: List[Any]
    original_count: int
    duplicates_removed: int

    @property
    def deduplicated_count(self) -> int:
        return len(self.records)

    @property
    def deduplication_rate(self) -> float:
        """Percentage of input rows removed."""
        if not self.original_count:
            return 0.0
        return round(self.duplicates_removed / self.original_count * 100, 2)


def key_on(*fields: str) -> KeyFn:
    """Key function reading ``fields`` from a mapping."""
    def key_fn(record: Mapping[str, Any]) -> Optional[DedupKey]:
        return DedupKey.of(*(record.get(f) for f in fields))
    return key_fn


def keep_first(existing: Any, incoming: Any) -> Any:
    return existing


def deduplicate(
    records: Iterable[Any],
    key_fn: KeyFn,
    merge_fn: MergeFn = keep_first,
) -> DedupResult:
    """
    Collapse records that share a key.

    Args:
        records: Input rows, in order
        key_fn: Returns a DedupKey, or None for rows without a key
        merge_fn: merge_fn(existing, incoming) -> merged record

    Returns:
        DedupResult with first-occurrence order preserved
    """
    rows = list(records)
    merged: Dict[DedupKey, int] = {}
    output: List[Any] = []
    removed = 0

    for record in rows:
        key = key_fn(record)
        if key is None:
            output.append(record)
            continue

        index = merged.get(key)
        if index is None:
            merged[key] = len(output)
            output.append(record)
        else:
            output[index] = merge_fn(output[index], record)
            removed += 1

    return DedupResult(records=output, original_count=len(rows), duplicates_removed=removed)


# ============================================================================
# Merge helpers
# ============================================================================

def merge_unique(list_field: str, source_field: Optional[str] = None) -> MergeFn:
    """
    Merge function accumulating distinct values into ``list_field``.

    Values come from ``source_field`` of the incoming record (defaults to
    the incoming record's own ``list_field``). Records are dicts; a new dict
    is returned so inputs are never mutated.
    """
    def merge(existing: Mapping[str, Any], incoming: Mapping[str, Any]) -> Dict[str, Any]:
        values = list(existing.get(list_field) or [])
        if source_field is not None:
            new_values: Sequence[Any] = [incoming.get(source_field)]
        else:
            new_values = incoming.get(list_field) or []
        for value in new_values:
            if value is not None and value != "" and value not in values:
                values.append(value)
        return {**existing, list_field: values}
    return merge


def sum_counts(field: str = "count") -> MergeFn:
    def merge(existing: Mapping[str, Any], incoming: Mapping[str, Any]) -> Dict[str, Any]:
        return {**existing, field: (existing.get(field) or 0) + (incoming.get(field) or 0)}
    return merge


def deduplicate_aggregated(
    records: Iterable[Mapping[str, Any]],
    key_fields: Sequence[str] = ("period", "topic"),
    count_field: str = "count",
) -> List[Dict[str, Any]]:
    """Merge aggregated rows sharing a composite key by summing their counts."""
    result = deduplicate(
        (dict(r) for r in records),
        key_on(*key_fields),
        sum_counts(count_field),
    )
    return result.records
