"""Longest-processing-time greedy assignment.

Two flavours live here:

* ``assign_lpt`` is the affinity-aware greedy used by the scheduler both as
  the answer for large inputs and as the upper bound that seeds the
  branch-and-bound search.
* ``assign_files_lpt`` is the plain variant used for file-level sharding,
  where every unit is already a whole spec file and no penalty applies.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from shardplan.models.unit import LaneAssignment, empty_lanes
from shardplan.utils.rounding import round_half_up

if TYPE_CHECKING:
    from collections.abc import Sequence

    from shardplan.models.unit import Unit


@dataclass
class LaneState:
    """Working state of one lane while units are being placed."""

    index: int
    """Lane index (1-based)."""

    load: int = 0
    """Sum of real unit durations."""

    effective_load: int = 0
    """Real load plus every affinity penalty charged to this lane."""

    unit_ids: list[str] = field(default_factory=list)
    group_counts: dict[str, int] = field(default_factory=dict)

    def holds(self, group: str) -> bool:
        return self.group_counts.get(group, 0) > 0

    def to_assignment(self) -> LaneAssignment:
        return LaneAssignment(
            index=self.index,
            unit_ids=list(self.unit_ids),
            expected_duration=self.load,
        )


def amortized_penalty(penalty: int, remaining: int, total: int) -> int:
    """Scale *penalty* by the share of a group's units still unplaced.

    The first unit of a file pays the full penalty, the last pays
    ``penalty / total``.
    """
    if penalty <= 0 or total <= 0:
        return 0
    return round_half_up(penalty * remaining / total)


def assign_lpt(
    units: Sequence[Unit],
    lane_count: int,
    penalty: int = 0,
    group_totals: Mapping[str, int] | None = None,
) -> list[LaneState]:
    """Place *units* greedily in the given order.

    Each unit goes to the lane with the lowest ``load + duration + penalty``,
    where the (amortized) penalty applies only when the lane does not hold the
    unit's group yet.  Ties go to a lane already holding the group, then to
    the lower index.

    *units* should already be sorted by descending duration.  *group_totals*
    is not modified; a private remaining-counter is kept per call.
    """
    lanes = [LaneState(index=i + 1) for i in range(lane_count)]
    if group_totals is None:
        totals: dict[str, int] = {}
        for unit in units:
            totals[unit.group] = totals.get(unit.group, 0) + 1
    else:
        totals = dict(group_totals)
    remaining = dict(totals)

    for unit in units:
        group = unit.group
        charge = amortized_penalty(penalty, remaining[group], totals[group])

        target = lanes[0]
        best_key: tuple[int, bool, int] | None = None
        for lane in lanes:
            held = lane.holds(group)
            key = (lane.load + unit.duration + (0 if held else charge), not held, lane.index)
            if best_key is None or key < best_key:
                target, best_key = lane, key

        if not target.holds(group):
            target.effective_load += charge
        target.load += unit.duration
        target.effective_load += unit.duration
        target.unit_ids.append(unit.id)
        target.group_counts[group] = target.group_counts.get(group, 0) + 1
        remaining[group] -= 1

    return lanes


def assign_files_lpt(files: Mapping[str, int], lane_count: int) -> list[LaneAssignment]:
    """Distribute whole files by plain LPT.

    Args:
        files: File path to duration in milliseconds.
        lane_count: Number of shards.

    Returns:
        ``lane_count`` lanes; larger files are placed first, each on the
        currently lightest lane (lowest index on ties).
    """
    lanes = empty_lanes(lane_count)
    ordered = sorted(files.items(), key=lambda item: (-item[1], item[0]))
    for file_path, duration in ordered:
        target = min(lanes, key=lambda lane: (lane.expected_duration, lane.index))
        target.unit_ids.append(file_path)
        target.expected_duration += duration
    return lanes


def calculate_balance_ratio(lanes: Sequence[LaneAssignment]) -> float:
    """Return max/min duration over non-empty lanes (1.0 is perfect balance)."""
    durations = [lane.expected_duration for lane in lanes if lane.expected_duration > 0]
    if not durations:
        return 1.0
    return max(durations) / min(durations)
