"""shardplan CLI: top-level command group."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any

import click
import yaml
from rich.logging import RichHandler

from shardplan import __version__
from shardplan.config import ShardplanConfig, load_config, validate_config
from shardplan.discovery.playwright import (
    DiscoveredTest,
    discover_tests,
    discover_tests_from_files,
    group_tests_by_file,
    load_test_list,
)
from shardplan.errors import DiscoveryError, ShardplanError
from shardplan.models.unit import AssignResult
from shardplan.reporters.terminal import console, reporter
from shardplan.reporting.extract import extract_measurements, read_batch, read_report, write_batch
from shardplan.sharding.grep import determine_grep_strategy
from shardplan.sharding.lpt import assign_files_lpt, calculate_balance_ratio
from shardplan.sharding.scheduler import assign
from shardplan.timing.affinity import derive_penalty
from shardplan.timing.estimator import estimate_file_duration, estimate_units
from shardplan.timing.store import get_group_duration, load_timing_file, merge, prune, save_timing_file
from shardplan.utils.slugify import slugify

logger = logging.getLogger(__name__)

_PATH_OPTION = click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root directory (where .shardplan.yml lives).",
)


def _configure_logging(*, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=reporter.err_console, show_path=False)],
        force=True,
    )


def _load(path: str) -> ShardplanConfig:
    try:
        return load_config(path)
    except ShardplanError as e:
        reporter.print_error(f"Failed to load configuration: {e}")
        raise click.Abort from e


def _resolve_test_dir(config: ShardplanConfig, test_dir: str | None) -> Path:
    if test_dir:
        return Path(test_dir).resolve()
    if config.discovery.test_dir:
        return config.resolve_path(config.discovery.test_dir).resolve()
    return Path(config.project.root)


def _discover(
    config: ShardplanConfig,
    test_dir: Path,
    *,
    project: str | None,
    config_dir: str | None,
    glob_pattern: str,
    use_fallback: bool,
) -> list[DiscoveredTest]:
    """Discover tests with Playwright, scanning sources when that fails."""
    if use_fallback:
        return discover_tests_from_files(test_dir, glob_pattern)

    cwd = Path(config_dir).resolve() if config_dir else None
    if cwd is None and config.discovery.config_dir:
        cwd = config.resolve_path(config.discovery.config_dir)
    try:
        return asyncio.run(discover_tests(test_dir, project, cwd))
    except DiscoveryError as e:
        reporter.print_warning(f"Playwright --list failed, falling back to file parsing: {e}")
        return discover_tests_from_files(test_dir, glob_pattern)


def _echo_json(payload: dict[str, Any] | list[Any]) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
@click.version_option(version=__version__, prog_name="shardplan")
def cli(*, verbose: bool) -> None:
    """shardplan: timing-aware Playwright test sharding."""
    _configure_logging(verbose=verbose)


# ── list-tests ────────────────────────────────────────────────────


@cli.command("list-tests")
@_PATH_OPTION
@click.option("-d", "--test-dir", default=None, help="Test directory (defaults to discovery.test_dir).")
@click.option("-p", "--project", default=None, help="Playwright project name.")
@click.option("--config-dir", default=None, help="Directory containing playwright.config.ts.")
@click.option("--glob-pattern", default=None, help="Spec file pattern for source scanning.")
@click.option("--use-fallback", is_flag=True, help="Scan spec files instead of running Playwright.")
@click.option(
    "-f",
    "--output-format",
    type=click.Choice(["json", "text"]),
    default="json",
    show_default=True,
)
@click.option("--show-ids", is_flag=True, help="Show canonical test IDs in text output.")
def list_tests(
    path: str,
    test_dir: str | None,
    project: str | None,
    config_dir: str | None,
    glob_pattern: str | None,
    output_format: str,
    *,
    use_fallback: bool,
    show_ids: bool,
) -> None:
    """Discover all tests in a Playwright project.

    Example:
      shardplan list-tests --test-dir ./e2e --project chromium --output-format text
    """
    config = _load(path)
    tests = _discover(
        config,
        _resolve_test_dir(config, test_dir),
        project=project or config.discovery.project or None,
        config_dir=config_dir,
        glob_pattern=glob_pattern or config.discovery.glob_pattern,
        use_fallback=use_fallback or config.discovery.use_fallback,
    )

    if output_format == "json":
        _echo_json([t.to_dict() for t in tests])
    else:
        reporter.print_discovered_tests(group_tests_by_file(tests), show_ids=show_ids)


# ── assign ────────────────────────────────────────────────────────


def _assign_tests(
    tests: list[DiscoveredTest],
    shards: int,
    timing_file: Path,
    timeout_ms: int,
    affinity_penalty: int | None,
) -> tuple[AssignResult, dict[str, Any]]:
    store = load_timing_file(timing_file)
    units = estimate_units([t.test_id for t in tests], store)
    penalty = affinity_penalty if affinity_penalty is not None else derive_penalty(store)
    logger.debug("Using file affinity penalty of %d ms", penalty)

    result = assign(units, shards, timeout_ms, penalty)
    # Structured ids keep titles containing "::" intact in the grep patterns.
    structured = {u.id: u.test_id for u in units}
    payload = result.to_dict()
    payload["grep"] = {
        str(lane.index): asdict(determine_grep_strategy([structured[i] for i in lane.unit_ids]))
        for lane in result.lanes
    }
    payload["estimatedUnitIds"] = [u.id for u in units if u.estimated]
    payload["totalUnits"] = len(units)
    return result, payload


def _assign_files(
    test_dir: Path,
    glob_pattern: str,
    shards: int,
    timing_file: Path,
    ms_per_line: int,
) -> tuple[AssignResult, dict[str, Any]]:
    store = load_timing_file(timing_file)
    durations: dict[str, int] = {}
    estimated: list[str] = []
    for spec in sorted(test_dir.glob(glob_pattern)):
        if not spec.is_file():
            continue
        group = spec.relative_to(test_dir).as_posix()
        recorded = get_group_duration(store, group)
        if recorded is None:
            recorded = estimate_file_duration(spec, ms_per_line)
            estimated.append(group)
        durations[group] = recorded

    lanes = assign_files_lpt(durations, shards)
    makespan = max(lane.expected_duration for lane in lanes)
    result = AssignResult(lanes=lanes, makespan=makespan, is_optimal=False)
    payload = result.to_dict()
    payload["estimatedUnitIds"] = estimated
    payload["totalUnits"] = len(durations)
    return result, payload


@cli.command("assign")
@_PATH_OPTION
@click.option("-s", "--shards", type=int, default=None, help="Number of shards (defaults to scheduler.shards).")
@click.option("-d", "--test-dir", default=None, help="Test directory (defaults to discovery.test_dir).")
@click.option("--test-list", default=None, type=click.Path(dir_okay=False), help="Pre-generated test list.")
@click.option("-t", "--timing-file", default=None, help="Timing data file (defaults to timing.timing_file).")
@click.option("-p", "--project", default=None, help="Playwright project name.")
@click.option("--config-dir", default=None, help="Directory containing playwright.config.ts.")
@click.option("--timeout", "timeout_ms", type=int, default=None, help="Search budget in milliseconds.")
@click.option("--affinity-penalty", type=int, default=None, help="File affinity penalty in ms (derived if unset).")
@click.option("--level", type=click.Choice(["test", "file"]), default=None, help="Assignment granularity.")
@click.option("--glob-pattern", default=None, help="Spec file pattern.")
@click.option("--use-fallback", is_flag=True, help="Scan spec files instead of running Playwright.")
@click.option(
    "-f",
    "--output-format",
    type=click.Choice(["json", "text"]),
    default="json",
    show_default=True,
)
def assign_command(
    path: str,
    shards: int | None,
    test_dir: str | None,
    test_list: str | None,
    timing_file: str | None,
    project: str | None,
    config_dir: str | None,
    timeout_ms: int | None,
    affinity_penalty: int | None,
    level: str | None,
    glob_pattern: str | None,
    output_format: str,
    *,
    use_fallback: bool,
) -> None:
    """Assign tests (or whole files) to shards using timing history.

    Example:
      shardplan assign --test-dir ./e2e --shards 4
      shardplan assign --test-list tests.json --shards 4 --output-format text
    """
    config = _load(path)
    shard_count = shards if shards is not None else config.scheduler.shards
    if shard_count <= 0:
        reporter.print_error("Number of shards must be positive (use --shards or scheduler.shards)")
        raise click.Abort

    level = level or config.scheduler.level
    if test_list and level != "test":
        reporter.print_error("--test-list is only supported with --level test")
        raise click.Abort

    timing_path = config.resolve_path(timing_file or config.timing.timing_file)
    pattern = glob_pattern or config.discovery.glob_pattern
    resolved_dir = _resolve_test_dir(config, test_dir)
    project = project or config.discovery.project or None

    try:
        if level == "file":
            result, payload = _assign_files(
                resolved_dir, pattern, shard_count, timing_path, config.timing.ms_per_line
            )
        else:
            if test_list:
                tests = load_test_list(Path(test_list), project)
            else:
                tests = _discover(
                    config,
                    resolved_dir,
                    project=project,
                    config_dir=config_dir,
                    glob_pattern=pattern,
                    use_fallback=use_fallback or config.discovery.use_fallback,
                )
            if not tests:
                reporter.print_warning(f"No tests found in {test_list or resolved_dir}")
            result, payload = _assign_tests(
                tests,
                shard_count,
                timing_path,
                timeout_ms if timeout_ms is not None else config.scheduler.timeout_ms,
                affinity_penalty if affinity_penalty is not None else config.scheduler.affinity_penalty,
            )
    except ShardplanError as e:
        reporter.print_error(str(e))
        raise click.Abort from e

    if output_format == "json":
        _echo_json(payload)
    else:
        reporter.print_assignment(
            result,
            estimated_ids=payload["estimatedUnitIds"],
            balance_ratio=calculate_balance_ratio(result.lanes),
        )


# ── extract-timing ────────────────────────────────────────────────


@cli.command("extract-timing")
@click.option(
    "-r",
    "--report-file",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Playwright JSON report.",
)
@click.option("-o", "--output-file", default=None, type=click.Path(dir_okay=False), help="Batch output path.")
@click.option(
    "-O",
    "--output-dir",
    default=None,
    type=click.Path(file_okay=False),
    help="Write timing-<project>-<shard>.json into this directory.",
)
@click.option("-s", "--shard", "lane_index", type=int, default=1, show_default=True, help="Shard index.")
@click.option("-p", "--project", default="default", show_default=True, help="Playwright project name.")
def extract_timing(
    report_file: str,
    output_file: str | None,
    output_dir: str | None,
    lane_index: int,
    project: str,
) -> None:
    """Extract per-test durations from a Playwright JSON report.

    Prints the batch as JSON unless an output file or directory is given.

    Example:
      shardplan extract-timing -r results.json -s 2 -p "Mobile Chrome" -O timing/
    """
    if output_file is None and output_dir is not None:
        output_file = str(Path(output_dir) / f"timing-{slugify(project)}-{lane_index}.json")

    try:
        batch = extract_measurements(read_report(Path(report_file)), project, lane_index)
        if output_file:
            write_batch(Path(output_file), batch)
            reporter.print_success(f"Wrote timing for {len(batch.measurements)} tests to {output_file}")
        else:
            _echo_json(batch.to_dict())
    except (ShardplanError, OSError) as e:
        reporter.print_error(str(e))
        raise click.Abort from e


# ── merge-timing ──────────────────────────────────────────────────


@cli.command("merge-timing")
@_PATH_OPTION
@click.option("-e", "--existing", default=None, help="Existing timing file (defaults to timing.timing_file).")
@click.option(
    "-n",
    "--new",
    "batch_files",
    multiple=True,
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Batch file from extract-timing (repeatable).",
)
@click.option("-o", "--output", default=None, help="Output timing file (defaults to --existing).")
@click.option("--alpha", type=float, default=None, help="EMA smoothing factor (0-1).")
@click.option("--prune-days", type=int, default=None, help="Drop records older than this many days.")
@click.option(
    "--known-tests",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="Test list; records for tests not in it are dropped.",
)
@click.option(
    "-f",
    "--output-format",
    type=click.Choice(["json", "text"]),
    default="json",
    show_default=True,
)
def merge_timing(
    path: str,
    existing: str | None,
    batch_files: tuple[str, ...],
    output: str | None,
    alpha: float | None,
    prune_days: int | None,
    known_tests: str | None,
    output_format: str,
) -> None:
    """Merge shard timing batches into the timing history.

    Example:
      shardplan merge-timing --new shard-1.json --new shard-2.json
    """
    config = _load(path)
    existing_path = config.resolve_path(existing or config.timing.timing_file)
    output_path = config.resolve_path(output) if output else existing_path

    try:
        store = load_timing_file(existing_path)
        batches = [read_batch(Path(f)) for f in batch_files]
        merged = merge(store, batches, alpha if alpha is not None else config.timing.alpha)

        known_ids = None
        if known_tests:
            known_ids = {t.id for t in load_test_list(Path(known_tests))}
        pruned = prune(
            merged,
            prune_days if prune_days is not None else config.timing.prune_days,
            known_ids,
        )
        save_timing_file(output_path, pruned)
    except ShardplanError as e:
        reporter.print_error(str(e))
        raise click.Abort from e

    summary: dict[str, int | str] = {
        "output": str(output_path),
        "batches": len(batches),
        "measurements": sum(len(b.measurements) for b in batches),
        "pruned": len(merged) - len(pruned),
        "totalTests": len(pruned),
    }
    if output_format == "json":
        _echo_json(summary)
    else:
        reporter.print_merge_summary(summary)


# ── config ────────────────────────────────────────────────────────


@cli.group("config")
def config_group() -> None:
    """Inspect `.shardplan.yml` configuration."""


@config_group.command("show")
@_PATH_OPTION
@click.option("--json-output", "as_json", is_flag=True, help="Output as JSON instead of YAML.")
def config_show(path: str, *, as_json: bool) -> None:
    """Display resolved configuration."""
    config = _load(path)
    config_dict = asdict(config)
    config_dict.pop("raw", None)

    if as_json:
        _echo_json(config_dict)
    else:
        console.print("[bold cyan]Configuration:[/bold cyan]")
        click.echo(yaml.safe_dump(config_dict, sort_keys=False, default_flow_style=False))


@config_group.command("validate")
@_PATH_OPTION
def config_validate(path: str) -> None:
    """Validate `.shardplan.yml` values."""
    config = _load(path)
    errors = validate_config(config)

    if not errors:
        reporter.print_success("Configuration is valid!")
        return

    reporter.print_error(f"Found {len(errors)} configuration error(s):")
    for idx, error in enumerate(errors, start=1):
        reporter.err_console.print(f"  {idx}. [red]{error}[/red]")
    raise click.Abort
