"""Per-test durations from Playwright JSON reports.

Each shard runs Playwright with ``--reporter=json`` and turns the report into
a ``MeasurementBatch`` artifact; ``merge-timing`` later folds every shard's
batch into the timing history.  Test ids must match the ones produced by
discovery, so they are built relative to the same project ``testDir``.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from shardplan.discovery.playwright import nested_titles
from shardplan.errors import ReportFormatError
from shardplan.models.test_id import build_test_id, resolve_group
from shardplan.timing.store import MeasurementBatch

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


def report_test_dir(report: dict[str, Any], project: str) -> str:
    """Return the ``testDir`` of *project* from the report config.

    Falls back to the first project when *project* is not listed.  Never falls
    back to ``rootDir``: ids must share their base with discovered ids.

    Raises:
        ReportFormatError: If the config, its projects, or the ``testDir``
            is missing.
    """
    config = report.get("config")
    if not isinstance(config, dict):
        msg = "Report has no config section; use the Playwright JSON reporter with config output enabled"
        raise ReportFormatError(msg)

    projects = config.get("projects")
    if not isinstance(projects, list) or not projects:
        msg = "Report has no projects in config; configure at least one project in playwright.config.ts"
        raise ReportFormatError(msg)

    selected = next(
        (p for p in projects if isinstance(p, dict) and p.get("name") == project),
        projects[0],
    )
    test_dir = selected.get("testDir") if isinstance(selected, dict) else None
    if not test_dir:
        name = selected.get("name", "?") if isinstance(selected, dict) else "?"
        msg = f'Project "{name}" has no testDir in report config'
        raise ReportFormatError(msg)
    return str(test_dir)


def _result_duration(result: dict[str, Any], test_id: str) -> int:
    try:
        return max(int(result.get("duration", 0) or 0), 0)
    except (TypeError, ValueError, OverflowError):
        logger.debug("Ignoring unusable duration %r for %s", result.get("duration"), test_id)
        return 0


def _collect(
    suite: dict[str, Any],
    parent_titles: list[str],
    parent_file: str,
    bases: tuple[str, str | None],
    durations: dict[str, int],
) -> None:
    file_path = suite.get("file") or parent_file
    titles = nested_titles(parent_titles, suite, file_path)
    test_dir, root_dir = bases
    group = resolve_group(file_path, test_dir=test_dir, root_dir=root_dir)

    for spec in suite.get("specs") or []:
        test_id = build_test_id(group, [*titles, spec.get("title", "")])
        # Retries count: every attempt occupied the shard.
        total = 0
        for test in spec.get("tests") or []:
            for result in test.get("results") or []:
                total += _result_duration(result, test_id)
        durations[test_id] = durations.get(test_id, 0) + total

    for nested in suite.get("suites") or []:
        _collect(nested, titles, file_path, bases, durations)


def extract_measurements(
    report: dict[str, Any],
    project: str = "default",
    lane_index: int = 1,
) -> MeasurementBatch:
    """Build a measurement batch from a decoded Playwright JSON report.

    A test that Playwright runs in several projects appears once per project
    in the report; durations of the same id are summed.

    Raises:
        ReportFormatError: If the report config lacks the project ``testDir``.
    """
    test_dir = report_test_dir(report, project)
    config = report.get("config") or {}
    root_dir = config.get("rootDir") or None

    durations: dict[str, int] = {}
    for suite in report.get("suites") or []:
        if isinstance(suite, dict):
            _collect(suite, [], "", (test_dir, root_dir), durations)

    logger.info("Extracted timing for %d tests (shard %d, project %s)", len(durations), lane_index, project)
    return MeasurementBatch(lane_index=lane_index, group_label=project, measurements=durations)


def read_report(path: Path) -> dict[str, Any]:
    """Load a Playwright JSON report.

    Raises:
        ReportFormatError: If the file cannot be read or is not a JSON object.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        msg = f"Failed to read Playwright report {path}: {exc}"
        raise ReportFormatError(msg) from exc
    if not isinstance(data, dict):
        msg = f"Playwright report {path} is not a JSON object"
        raise ReportFormatError(msg)
    return data


def write_batch(path: Path, batch: MeasurementBatch) -> None:
    """Write a batch artifact as JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(batch.to_dict(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    logger.info("Wrote timing batch to %s", path)


def read_batch(path: Path) -> MeasurementBatch:
    """Read a batch artifact written by ``write_batch``.

    Raises:
        ReportFormatError: If the artifact is unreadable or malformed.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            msg = "expected a JSON object"
            raise TypeError(msg)
        return MeasurementBatch.from_dict(data)
    except (OSError, json.JSONDecodeError, TypeError, ValueError, OverflowError) as exc:
        msg = f"Invalid timing batch {path}: {exc}"
        raise ReportFormatError(msg) from exc
