"""Tests for record de-duplication."""

import itertools

import pytest

from core.dedup import (
    DedupKey,
    deduplicate,
    deduplicate_aggregated,
    key_on,
    merge_unique,
    sum_counts,
)


def test_keeps_first_occurrence_in_order():
    rows = [
        {"unique_key": "1", "n": "a"},
        {"unique_key": "2", "n": "b"},
        {"unique_key": "1", "n": "c"},
    ]
    result = deduplicate(rows, key_on("unique_key"))

    assert [r["n"] for r in result.records] == ["a", "b"]
    assert result.original_count == 3
    assert result.duplicates_removed == 1
    assert result.deduplicated_count == 2
    assert result.deduplication_rate == 33.33


def test_dedup_is_idempotent():
    rows = [{"id": i % 3, "purposes": [f"p{i}"]} for i in range(9)]
    merge = merge_unique("purposes")

    once = deduplicate(rows, key_on("id"), merge)
    twice = deduplicate(once.records, key_on("id"), merge)

    assert twice.records == once.records
    assert twice.duplicates_removed == 0


def test_key_parts_are_strictly_typed():
    rows = [{"id": 123}, {"id": "123"}, {"id": 1}, {"id": True}]
    result = deduplicate(rows, key_on("id"))

    assert result.duplicates_removed == 0
    assert DedupKey.of(123) != DedupKey.of("123")
    assert str(DedupKey.of("1", 2)) == "1|2"


@pytest.mark.parametrize("missing", [None, ""])
def test_rows_with_missing_key_parts_are_all_kept(missing):
    rows = [{"a": "x", "b": missing}, {"a": "x", "b": missing}, {"a": "x", "b": "y"}]
    result = deduplicate(rows, key_on("a", "b"))

    assert len(result.records) == 3
    assert result.duplicates_removed == 0
    assert DedupKey.of("x", missing) is None


def test_merge_unique_collects_distinct_values_without_mutating():
    first = {"segment_id": "1", "purposes": ["Paving"], "purpose": "Paving"}
    second = {"segment_id": "1", "purposes": ["Utility Work"], "purpose": "Utility Work"}
    third = {"segment_id": "1", "purposes": ["Paving", ""], "purpose": "Paving"}

    result = deduplicate([first, second, third], key_on("segment_id"), merge_unique("purposes"))

    assert result.records[0]["purposes"] == ["Paving", "Utility Work"]
    assert first["purposes"] == ["Paving"]


def test_merge_unique_from_source_field():
    merge = merge_unique("purposes", source_field="purpose")
    merged = merge({"purposes": ["A"]}, {"purpose": "B"})
    assert merged["purposes"] == ["A", "B"]
    assert merge(merged, {"purpose": None})["purposes"] == ["A", "B"]


def test_sum_counts_treats_missing_as_zero():
    assert sum_counts()({"count": 2}, {"count": None}) == {"count": 2}


AGGREGATED = [
    {"period": "2025-01-01", "topic": "Noise", "count": 5},
    {"period": "2025-01-01", "topic": "Noise", "count": 3},
    {"period": "2025-01-01", "topic": "Heat", "count": 2},
    {"period": "2025-01-02", "topic": "Noise", "count": 4},
]


@pytest.mark.parametrize("order", list(itertools.permutations(range(len(AGGREGATED)))))
def test_aggregated_merge_is_order_independent(order):
    rows = [AGGREGATED[i] for i in order]
    merged = {
        (r["period"], r["topic"]): r["count"]
        for r in deduplicate_aggregated(rows)
    }
    assert merged == {
        ("2025-01-01", "Noise"): 8,
        ("2025-01-01", "Heat"): 2,
        ("2025-01-02", "Noise"): 4,
    }


def test_aggregated_merge_is_additive():
    a = [{"period": "p", "topic": "t", "count": 1}]
    b = [{"period": "p", "topic": "t", "count": 2}]
    c = [{"period": "p", "topic": "t", "count": 4}]

    assert deduplicate_aggregated(a + b)[0]["count"] == 3
    assert deduplicate_aggregated(a + b + c)[0]["count"] == 7
    assert deduplicate_aggregated(deduplicate_aggregated(a + b) + c)[0]["count"] == 7
    assert a[0]["count"] == 1
