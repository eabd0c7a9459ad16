"""Timing-aware shard assignment.

``assign`` is the single entry point: it turns weighted units into one lane
per shard, minimising the slowest shard.  Small inputs get an exhaustive
branch-and-bound search under a time budget; everything else, and any search
that runs out of time, falls back to the greedy LPT result.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from shardplan.errors import ConfigurationError
from shardplan.models.unit import AssignResult, empty_lanes
from shardplan.sharding.branch_bound import BranchAndBound, calculate_lower_bound
from shardplan.sharding.lpt import assign_lpt

if TYPE_CHECKING:
    from collections.abc import Iterable

    from shardplan.models.unit import Unit

logger = logging.getLogger(__name__)

# ── Constants ─────────────────────────────────────────────────────

DEFAULT_TIMEOUT_MS = 500
"""Time budget for the branch-and-bound search."""

MAX_SEARCH_UNITS = 50
"""Inputs larger than this skip the search and use LPT directly."""

__all__ = [
    "DEFAULT_TIMEOUT_MS",
    "MAX_SEARCH_UNITS",
    "ConfigurationError",
    "assign",
    "calculate_lower_bound",
]


def _one_per_lane(units: list[Unit], lane_count: int) -> AssignResult:
    lanes = empty_lanes(lane_count)
    for lane, unit in zip(lanes, units, strict=False):
        lane.unit_ids.append(unit.id)
        lane.expected_duration = unit.duration
    makespan = max(u.duration for u in units)
    return AssignResult(lanes=lanes, makespan=makespan, is_optimal=True)


def assign(
    units: Iterable[Unit],
    lane_count: int,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    affinity_penalty: int = 0,
) -> AssignResult:
    """Partition *units* across *lane_count* shards.

    Args:
        units: Tests with their durations.
        lane_count: Number of shards, must be positive.
        timeout_ms: Budget for the optimal search; the greedy answer is used
            when it expires.
        affinity_penalty: Cost (ms) of starting a spec file on a shard that
            does not already run it; 0 disables file affinity.

    Returns:
        Exactly ``lane_count`` lanes holding every unit once.  Lane durations
        and the makespan are real durations, never including penalties.
        ``is_optimal`` is True when the search improved on the greedy answer
        or ran to completion.  Without a penalty a completed search proves the
        greedy answer optimal.  With a penalty the search treats lanes of equal
        load that hold the same file as interchangeable even when they run
        different other files, so a completed search is only a strong result.

    Raises:
        ConfigurationError: If *lane_count* is not positive, or *timeout_ms*
            or *affinity_penalty* is negative.
    """
    if lane_count <= 0:
        msg = f"Number of shards must be positive, got {lane_count}"
        raise ConfigurationError(msg)
    if timeout_ms < 0:
        msg = f"timeout_ms must be >= 0, got {timeout_ms}"
        raise ConfigurationError(msg)
    if affinity_penalty < 0:
        msg = f"affinity_penalty must be >= 0, got {affinity_penalty}"
        raise ConfigurationError(msg)

    pending = list(units)
    if not pending:
        return AssignResult(lanes=empty_lanes(lane_count), makespan=0, is_optimal=True)

    if lane_count >= len(pending):
        return _one_per_lane(pending, lane_count)

    # Same-group units sit next to each other among equal durations.
    ordered = sorted(pending, key=lambda u: (-u.duration, u.group))
    group_totals: dict[str, int] = {}
    for unit in ordered:
        group_totals[unit.group] = group_totals.get(unit.group, 0) + 1

    lanes = assign_lpt(ordered, lane_count, affinity_penalty, group_totals)
    is_optimal = False

    if len(ordered) <= MAX_SEARCH_UNITS:
        seed = max(lane.effective_load for lane in lanes)
        search = BranchAndBound(ordered, lane_count, affinity_penalty, group_totals)
        outcome = search.run(seed, timeout_ms)
        if outcome.lanes is not None:
            lanes = outcome.lanes
            is_optimal = True
        elif outcome.completed:
            is_optimal = True
        else:
            logger.debug("Search timed out after %d ms, keeping LPT result", timeout_ms)
    else:
        logger.debug("%d units exceed search limit of %d, using LPT", len(ordered), MAX_SEARCH_UNITS)

    assignments = [lane.to_assignment() for lane in lanes]
    makespan = max(lane.expected_duration for lane in assignments)
    logger.info(
        "Assigned %d tests to %d shards (makespan %d ms, optimal=%s)",
        len(ordered),
        lane_count,
        makespan,
        is_optimal,
    )
    return AssignResult(lanes=assignments, makespan=makespan, is_optimal=is_optimal)
