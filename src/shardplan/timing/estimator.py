"""Duration estimation for tests without timing history.

Lookup order for a test id:

1. Its own record in the timing store (measured, ``estimated=False``).
2. Mean duration of recorded tests in the same file.
3. Mean duration of every recorded test.
4. ``DEFAULT_TEST_DURATION``.

File-level assignment uses a separate line-count heuristic for files that
have never been measured.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from shardplan.models.test_id import UnitId, group_of, parse_test_id
from shardplan.models.unit import Unit
from shardplan.utils.rounding import round_half_up

if TYPE_CHECKING:
    from pathlib import Path

    from shardplan.timing.store import TimingStore

logger = logging.getLogger(__name__)

# ── Constants ─────────────────────────────────────────────────────

DEFAULT_TEST_DURATION = 30_000
"""Duration (ms) assumed when the timing store holds no records at all."""

DEFAULT_MS_PER_LINE = 100
"""Milliseconds charged per source line by ``estimate_file_duration``."""

UNREADABLE_FILE_LINES = 50
"""Line count assumed for a spec file that cannot be read."""


# ── Data models ───────────────────────────────────────────────────


@dataclass(frozen=True)
class Estimate:
    """Duration for one test and whether it was guessed."""

    duration: int
    estimated: bool


@dataclass
class DurationIndex:
    """Per-invocation lookup over a timing store.

    Build it once with ``from_store`` and reuse it for every test in the run;
    group sums and the global mean are computed a single time.
    """

    durations: dict[str, int] = field(default_factory=dict)
    """Recorded duration by test id."""

    group_totals: dict[str, tuple[int, int]] = field(default_factory=dict)
    """``(sum, count)`` of recorded durations by group."""

    global_mean: int | None = None
    """Rounded mean over all records, ``None`` for an empty store."""

    @classmethod
    def from_store(cls, store: TimingStore | None) -> DurationIndex:
        if store is None or not store.records:
            return cls()

        durations: dict[str, int] = {}
        group_totals: dict[str, tuple[int, int]] = {}
        for test_id, record in store.records.items():
            durations[test_id] = record.duration
            total, count = group_totals.get(record.group, (0, 0))
            group_totals[record.group] = (total + record.duration, count + 1)

        global_mean = round_half_up(sum(durations.values()) / len(durations))
        return cls(durations=durations, group_totals=group_totals, global_mean=global_mean)

    def group_mean(self, group: str) -> int | None:
        """Rounded mean of the recorded tests in *group*, if any."""
        totals = self.group_totals.get(group)
        if totals is None:
            return None
        total, count = totals
        return round_half_up(total / count)

    def estimate(self, test_id: UnitId | str) -> Estimate:
        """Return the measured or estimated duration of one test."""
        if isinstance(test_id, UnitId):
            key, group = str(test_id), test_id.group
        else:
            key, group = test_id, group_of(test_id)

        measured = self.durations.get(key)
        if measured is not None:
            return Estimate(duration=measured, estimated=False)

        same_group = self.group_mean(group)
        if same_group is not None:
            return Estimate(duration=same_group, estimated=True)

        if self.global_mean is not None:
            return Estimate(duration=self.global_mean, estimated=True)

        return Estimate(duration=DEFAULT_TEST_DURATION, estimated=True)


# ── Public API ────────────────────────────────────────────────────


def estimate(test_id: UnitId | str, store: TimingStore | None) -> Estimate:
    """Estimate a single test.

    Builds a throw-away ``DurationIndex``; use ``estimate_units`` or keep an
    index when annotating many tests.
    """
    return DurationIndex.from_store(store).estimate(test_id)


def estimate_units(
    test_ids: Iterable[UnitId | str],
    store: TimingStore | None,
) -> list[Unit]:
    """Annotate every test with a duration, preserving input order."""
    index = DurationIndex.from_store(store)
    units: list[Unit] = []
    for test_id in test_ids:
        structured = test_id if isinstance(test_id, UnitId) else parse_test_id(test_id)
        result = index.estimate(test_id)
        units.append(Unit(test_id=structured, duration=result.duration, estimated=result.estimated))

    estimated = sum(1 for u in units if u.estimated)
    logger.debug("Annotated %d tests (%d estimated)", len(units), estimated)
    return units


def calculate_average_duration(store: TimingStore | None) -> int:
    """Return the rounded mean duration over all records, or the default."""
    index = DurationIndex.from_store(store)
    return index.global_mean if index.global_mean is not None else DEFAULT_TEST_DURATION


def count_lines(path: Path) -> int:
    """Count lines in *path*; unreadable files count as ``UNREADABLE_FILE_LINES``."""
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        logger.debug("Cannot read %s, assuming %d lines", path, UNREADABLE_FILE_LINES)
        return UNREADABLE_FILE_LINES
    return len(content.split("\n"))


def estimate_file_duration(path: Path, ms_per_line: int = DEFAULT_MS_PER_LINE) -> int:
    """Estimate a whole spec file's duration from its length."""
    return count_lines(path) * ms_per_line
