"""Scheduler input and output records."""

from __future__ import annotations

from dataclasses import dataclass, field

from shardplan.errors import ConfigurationError
from shardplan.models.test_id import UnitId, parse_test_id


@dataclass(frozen=True)
class Unit:
    """One schedulable test with its (measured or estimated) duration."""

    test_id: UnitId
    """Structured identifier; ``test_id.group`` drives file affinity."""

    duration: int
    """Non-negative duration in milliseconds."""

    estimated: bool = False
    """True when no direct historical measurement existed."""

    def __post_init__(self) -> None:
        if self.duration < 0:
            msg = f"Duration of {self.test_id} must be >= 0, got {self.duration}"
            raise ConfigurationError(msg)

    @property
    def id(self) -> str:
        """Canonical string form of the identifier."""
        return str(self.test_id)

    @property
    def group(self) -> str:
        return self.test_id.group

    @classmethod
    def from_string(cls, test_id: str, duration: int, *, estimated: bool = False) -> Unit:
        """Build a unit from a canonical id string."""
        return cls(test_id=parse_test_id(test_id), duration=duration, estimated=estimated)


@dataclass
class LaneAssignment:
    """Units assigned to one shard."""

    index: int
    """Shard index (1-based)."""

    unit_ids: list[str] = field(default_factory=list)
    """Canonical ids of the assigned units."""

    expected_duration: int = 0
    """Sum of real unit durations, never including affinity penalties."""


@dataclass
class AssignResult:
    """Complete output of ``assign``."""

    lanes: list[LaneAssignment]
    makespan: int
    is_optimal: bool

    def to_dict(self) -> dict[str, object]:
        """Serialise to the flat JSON contract consumed by shard runners."""
        return {
            "lanes": {
                str(lane.index): {
                    "unitIds": list(lane.unit_ids),
                    "expectedDurationMs": lane.expected_duration,
                }
                for lane in self.lanes
            },
            "makespanMs": self.makespan,
            "isOptimal": self.is_optimal,
        }

    @property
    def total_units(self) -> int:
        return sum(len(lane.unit_ids) for lane in self.lanes)


def empty_lanes(lane_count: int) -> list[LaneAssignment]:
    """Return *lane_count* empty lanes indexed ``1..lane_count``."""
    return [LaneAssignment(index=i + 1) for i in range(lane_count)]
