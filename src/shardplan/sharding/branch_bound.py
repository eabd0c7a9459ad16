"""Branch-and-bound search for a minimum-makespan partition.

The search places units one at a time, in the scheduler's sorted order, and
tries every lane for each unit.  It minimises the *effective* makespan, the
real lane load plus the affinity penalties charged to that lane, and is seeded
with the greedy result so that any complete solution it records is a strict
improvement.

Pruning uses a lower bound that spreads the remaining real work and the
penalties no assignment can avoid (groups not yet on any lane) evenly over all
lanes.  Lanes with an identical state at a node are explored once.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from shardplan.sharding.lpt import LaneState, amortized_penalty

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from shardplan.models.unit import Unit

logger = logging.getLogger(__name__)


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def calculate_lower_bound(units: Sequence[Unit], lane_count: int) -> int:
    """Makespan no partition of *units* can beat, ignoring affinity.

    The larger of the longest single unit and the perfectly even split.
    """
    if not units:
        return 0
    total = sum(u.duration for u in units)
    longest = max(u.duration for u in units)
    return max(longest, _ceil_div(total, lane_count))


@dataclass
class SearchOutcome:
    """What the search found within its time budget."""

    lanes: list[LaneState] | None
    """Best improved solution, or ``None`` if the seed was never beaten."""

    effective_makespan: int
    """Effective makespan of the best solution (the seed's if not improved)."""

    completed: bool
    """True when the whole tree was explored before the deadline."""

    nodes: int = 0


class BranchAndBound:
    """One search over a fixed, sorted unit list.

    The instance owns all mutable search state; every placement is undone on
    the way back out of the recursion, including when the deadline fires.
    """

    def __init__(
        self,
        units: Sequence[Unit],
        lane_count: int,
        penalty: int,
        group_totals: Mapping[str, int],
    ) -> None:
        self._units = units
        self._lane_count = lane_count
        self._penalty = penalty
        self._totals = dict(group_totals)

        self._loads = [0] * lane_count
        self._effective = [0] * lane_count
        self._lane_units: list[list[str]] = [[] for _ in range(lane_count)]
        self._lane_groups: list[dict[str, int]] = [{} for _ in range(lane_count)]
        self._remaining = dict(group_totals)
        self._lanes_holding = dict.fromkeys(group_totals, 0)

        # _suffix[i] is the real duration of units[i:].
        self._suffix = [0] * (len(units) + 1)
        for i in range(len(units) - 1, -1, -1):
            self._suffix[i] = self._suffix[i + 1] + units[i].duration

        self._best = 0
        self._best_lanes: list[LaneState] | None = None
        self._deadline = 0.0
        self._nodes = 0

    def run(self, upper_bound: int, timeout_ms: int) -> SearchOutcome:
        """Search for a solution with effective makespan below *upper_bound*."""
        self._best = upper_bound
        self._best_lanes = None
        self._nodes = 0
        self._deadline = time.monotonic() + timeout_ms / 1000
        completed = self._search(0)
        logger.debug(
            "Branch-and-bound visited %d nodes (completed=%s, improved=%s)",
            self._nodes,
            completed,
            self._best_lanes is not None,
        )
        return SearchOutcome(
            lanes=self._best_lanes,
            effective_makespan=self._best,
            completed=completed,
            nodes=self._nodes,
        )

    # ── Search ────────────────────────────────────────────────────

    def _unavoidable_penalty(self) -> int:
        if self._penalty <= 0:
            return 0
        return sum(
            amortized_penalty(self._penalty, remaining, self._totals[group])
            for group, remaining in self._remaining.items()
            if remaining > 0 and self._lanes_holding[group] == 0
        )

    def _lower_bound(self, index: int) -> int:
        spread = sum(self._effective) + self._suffix[index] + self._unavoidable_penalty()
        return max(max(self._effective), _ceil_div(spread, self._lane_count))

    def _record(self) -> None:
        makespan = max(self._effective)
        if makespan >= self._best:
            return
        self._best = makespan
        self._best_lanes = [
            LaneState(
                index=lane + 1,
                load=self._loads[lane],
                effective_load=self._effective[lane],
                unit_ids=list(self._lane_units[lane]),
                group_counts={g: c for g, c in self._lane_groups[lane].items() if c > 0},
            )
            for lane in range(self._lane_count)
        ]

    def _search(self, index: int) -> bool:
        """Explore placements of ``units[index:]``; False means the deadline hit."""
        if time.monotonic() >= self._deadline:
            return False
        self._nodes += 1

        if index == len(self._units):
            self._record()
            return True

        if self._lower_bound(index) >= self._best:
            return True

        unit = self._units[index]
        group = unit.group
        charge = amortized_penalty(self._penalty, self._remaining[group], self._totals[group])
        order = sorted(range(self._lane_count), key=lambda lane: self._effective[lane])
        seen: set[object] = set()

        for lane in order:
            held = self._lane_groups[lane].get(group, 0) > 0
            state: object = (self._effective[lane], held) if self._penalty > 0 else self._effective[lane]
            if state in seen:
                continue
            seen.add(state)

            cost = unit.duration + (0 if held else charge)
            if self._effective[lane] + cost >= self._best:
                continue

            self._place(lane, unit.id, group, unit.duration, cost, held)
            try:
                completed = self._search(index + 1)
            finally:
                self._unplace(lane, group, unit.duration, cost, held)
            if not completed:
                return False

        return True

    def _place(self, lane: int, unit_id: str, group: str, duration: int, cost: int, held: bool) -> None:
        self._loads[lane] += duration
        self._effective[lane] += cost
        self._lane_units[lane].append(unit_id)
        self._lane_groups[lane][group] = self._lane_groups[lane].get(group, 0) + 1
        if not held:
            self._lanes_holding[group] += 1
        self._remaining[group] -= 1

    def _unplace(self, lane: int, group: str, duration: int, cost: int, held: bool) -> None:
        self._remaining[group] += 1
        if not held:
            self._lanes_holding[group] -= 1
        self._lane_groups[lane][group] -= 1
        self._lane_units[lane].pop()
        self._effective[lane] -= cost
        self._loads[lane] -= duration
