"""Tests for shardplan.timing.affinity."""

from __future__ import annotations

from datetime import UTC, datetime

from shardplan.timing.affinity import DEFAULT_AFFINITY_PENALTY, derive_penalty
from shardplan.timing.store import TimingRecord, TimingStore

NOW = datetime(2025, 1, 1, tzinfo=UTC)


def _store(tests: dict[str, tuple[str, int]]) -> TimingStore:
    records = {
        test_id: TimingRecord(group=group, duration=duration, runs=1, last_seen=NOW)
        for test_id, (group, duration) in tests.items()
    }
    return TimingStore(updated_at=NOW, records=records)


def test_default_without_store() -> None:
    assert derive_penalty(None) == DEFAULT_AFFINITY_PENALTY


def test_default_for_empty_store() -> None:
    assert derive_penalty(_store({})) == DEFAULT_AFFINITY_PENALTY


def test_lower_quartile_of_file_means() -> None:
    # Means: a=20000, b=45000, c=10000, d=32500.  Sorted [10000, 20000, 32500, 45000];
    # position 0.75 interpolates to 17500.
    store = _store(
        {
            "a::t1": ("a.spec.ts", 20000),
            "a::t2": ("a.spec.ts", 25000),
            "a::t3": ("a.spec.ts", 15000),
            "b::t1": ("b.spec.ts", 40000),
            "b::t2": ("b.spec.ts", 50000),
            "c::t1": ("c.spec.ts", 8000),
            "c::t2": ("c.spec.ts", 10000),
            "c::t3": ("c.spec.ts", 12000),
            "d::t1": ("d.spec.ts", 30000),
            "d::t2": ("d.spec.ts", 35000),
        }
    )
    assert derive_penalty(store) == 17500


def test_single_file_returns_its_mean() -> None:
    store = _store({"a::t1": ("a.spec.ts", 10000), "a::t2": ("a.spec.ts", 20000)})
    assert derive_penalty(store) == 15000


def test_two_files_interpolate() -> None:
    store = _store({"a::t1": ("a.spec.ts", 10000), "b::t1": ("b.spec.ts", 30000)})
    assert derive_penalty(store) == 15000


def test_result_is_rounded() -> None:
    # Means [1, 2]: 1 + 0.25 = 1.25 rounds to 1; [3, 5]: 3.5 rounds up to 4.
    assert derive_penalty(_store({"a::t": ("a", 1), "b::t": ("b", 2)})) == 1
    assert derive_penalty(_store({"a::t": ("a", 3), "b::t": ("b", 5)})) == 4
