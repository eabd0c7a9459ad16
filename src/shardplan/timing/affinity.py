"""File-affinity penalty derived from timing history.

Splitting one spec file across shards repeats its setup (browser contexts,
``beforeAll`` hooks) on every shard that runs part of it.  The scheduler
charges a penalty for placing a file's test on a shard that does not already
run that file; this module picks the size of that penalty.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from shardplan.utils.rounding import round_half_up

if TYPE_CHECKING:
    from shardplan.timing.store import TimingStore

DEFAULT_AFFINITY_PENALTY = 30_000
"""Penalty (ms) used when the store has no timing records."""

PENALTY_PERCENTILE = 0.25


def _percentile(sorted_values: list[float], fraction: float) -> float:
    """Linear interpolation between the two order statistics around *fraction*."""
    position = (len(sorted_values) - 1) * fraction
    lower = math.floor(position)
    upper = math.ceil(position)
    low_value = sorted_values[lower]
    high_value = sorted_values[upper]
    return low_value + (high_value - low_value) * (position - lower)


def derive_penalty(store: TimingStore | None) -> int:
    """Return the 25th percentile of per-file mean durations, rounded.

    The lower quartile keeps the penalty below the typical file cost, so the
    scheduler only splits a file when that clearly improves balance.
    """
    if store is None or not store.records:
        return DEFAULT_AFFINITY_PENALTY

    by_group: dict[str, list[int]] = {}
    for record in store.records.values():
        by_group.setdefault(record.group, []).append(record.duration)

    means = sorted(sum(durations) / len(durations) for durations in by_group.values())
    return round_half_up(_percentile(means, PENALTY_PERCENTILE))
