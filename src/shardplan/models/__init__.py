"""Data models for shardplan."""

from shardplan.models.test_id import UnitId, build_test_id, group_of, parse_test_id
from shardplan.models.unit import AssignResult, LaneAssignment, Unit

__all__ = [
    "AssignResult",
    "LaneAssignment",
    "UnitId",
    "Unit",
    "build_test_id",
    "group_of",
    "parse_test_id",
]
