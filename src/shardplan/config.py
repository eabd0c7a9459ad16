"""Configuration parsing from ``.shardplan.yml``."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from shardplan.errors import ConfigurationError
from shardplan.sharding.scheduler import DEFAULT_TIMEOUT_MS
from shardplan.timing.estimator import DEFAULT_MS_PER_LINE
from shardplan.timing.store import DEFAULT_EMA_ALPHA, DEFAULT_PRUNE_DAYS

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".shardplan.yml"
DEFAULT_TIMING_FILE = ".shardplan/timing.json"

_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")
_LEVELS = ("test", "file")


def _resolve_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with environment variable values."""

    def _replace(match: re.Match[str]) -> str:
        var = match.group(1)
        resolved = os.environ.get(var)
        if resolved is None:
            logger.warning("Environment variable %s is not set (referenced in config)", var)
            return ""
        return resolved

    return _ENV_VAR_RE.sub(_replace, value)


def _resolve_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively resolve environment variables in a dictionary."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            result[key] = _resolve_env_vars(value)
        elif isinstance(value, dict):
            result[key] = _resolve_dict(value)
        else:
            result[key] = value
    return result


@dataclass
class ProjectConfig:
    """Project-level configuration."""

    root: str
    """Project root directory."""


@dataclass
class DiscoveryConfig:
    """How tests are discovered."""

    test_dir: str = ""
    """Directory holding the spec files, relative to the project root."""

    config_dir: str = ""
    """Directory holding ``playwright.config.ts`` when it differs from ``test_dir``."""

    project: str = ""
    """Playwright project name."""

    glob_pattern: str = "**/*.spec.ts"
    """Spec file pattern for source-scanning discovery."""

    use_fallback: bool = False
    """Scan sources instead of running ``playwright test --list``."""


@dataclass
class SchedulerConfig:
    """Shard assignment settings."""

    shards: int = 0
    """Number of shards; 0 means it must be given on the command line."""

    timeout_ms: int = DEFAULT_TIMEOUT_MS
    """Time budget for the optimal search."""

    affinity_penalty: int | None = None
    """Fixed file-affinity penalty (ms); ``None`` derives it from timing data."""

    level: str = "test"
    """Assignment granularity: ``test`` or ``file``."""


@dataclass
class TimingConfig:
    """Timing history settings."""

    timing_file: str = DEFAULT_TIMING_FILE
    """Path of the timing JSON document, relative to the project root."""

    alpha: float = DEFAULT_EMA_ALPHA
    """EMA weight of the newest measurement."""

    prune_days: int = DEFAULT_PRUNE_DAYS
    """Drop records not seen for this many days."""

    ms_per_line: int = DEFAULT_MS_PER_LINE
    """Line-count estimate for unmeasured files (file-level assignment)."""


@dataclass
class ShardplanConfig:
    """Top-level configuration loaded from ``.shardplan.yml``."""

    project: ProjectConfig
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    raw: dict[str, Any] = field(default_factory=dict)
    """Raw parsed YAML for access to non-standard keys."""

    def resolve_path(self, value: str) -> Path:
        """Resolve *value* against the project root."""
        path = Path(value)
        return path if path.is_absolute() else Path(self.project.root) / path


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def load_config(root: str | Path) -> ShardplanConfig:
    """Load and parse ``.shardplan.yml`` under *root*.

    Missing files and missing keys fall back to defaults.  ``SHARDPLAN_SHARDS``
    and ``SHARDPLAN_TIMING_FILE`` supply values the file does not set.

    Raises:
        ConfigurationError: If the YAML is invalid or a value has the wrong type.
    """
    root_path = Path(root).resolve()
    config_file = root_path / CONFIG_FILE_NAME

    raw: dict[str, Any] = {}
    if config_file.is_file():
        try:
            parsed = yaml.safe_load(config_file.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            msg = f"Invalid YAML in {config_file}: {exc}"
            raise ConfigurationError(msg) from exc
        if isinstance(parsed, dict):
            raw = _resolve_dict(parsed)
        logger.debug("Loaded configuration from %s", config_file)

    project_raw = _section(raw, "project")
    discovery_raw = _section(raw, "discovery")
    scheduler_raw = _section(raw, "scheduler")
    timing_raw = _section(raw, "timing")

    try:
        project = ProjectConfig(root=str(project_raw.get("root", root_path)))

        discovery = DiscoveryConfig(
            test_dir=str(discovery_raw.get("test_dir", "")),
            config_dir=str(discovery_raw.get("config_dir", "")),
            project=str(discovery_raw.get("project", "")),
            glob_pattern=str(discovery_raw.get("glob_pattern", "**/*.spec.ts")),
            use_fallback=bool(discovery_raw.get("use_fallback", False)),
        )

        scheduler = SchedulerConfig(
            shards=int(scheduler_raw.get("shards", os.environ.get("SHARDPLAN_SHARDS", 0)) or 0),
            timeout_ms=int(scheduler_raw.get("timeout_ms", DEFAULT_TIMEOUT_MS)),
            affinity_penalty=_optional_int(scheduler_raw.get("affinity_penalty")),
            level=str(scheduler_raw.get("level", "test")),
        )

        timing = TimingConfig(
            timing_file=str(
                timing_raw.get("timing_file", os.environ.get("SHARDPLAN_TIMING_FILE", DEFAULT_TIMING_FILE))
            ),
            alpha=float(timing_raw.get("alpha", DEFAULT_EMA_ALPHA)),
            prune_days=int(timing_raw.get("prune_days", DEFAULT_PRUNE_DAYS)),
            ms_per_line=int(timing_raw.get("ms_per_line", DEFAULT_MS_PER_LINE)),
        )
    except (TypeError, ValueError, OverflowError) as exc:
        msg = f"Invalid value in {config_file}: {exc}"
        raise ConfigurationError(msg) from exc

    return ShardplanConfig(
        project=project,
        discovery=discovery,
        scheduler=scheduler,
        timing=timing,
        raw=raw,
    )


def validate_config(config: ShardplanConfig) -> list[str]:
    """Validate the configuration and return a list of error messages.

    Returns an empty list if the configuration is valid.
    """
    errors: list[str] = []

    if not config.project.root:
        errors.append("project.root is required")

    if config.scheduler.shards < 0:
        errors.append(f"scheduler.shards must be >= 0, got {config.scheduler.shards}")
    if config.scheduler.timeout_ms < 0:
        errors.append(f"scheduler.timeout_ms must be >= 0, got {config.scheduler.timeout_ms}")
    if config.scheduler.affinity_penalty is not None and config.scheduler.affinity_penalty < 0:
        errors.append(f"scheduler.affinity_penalty must be >= 0, got {config.scheduler.affinity_penalty}")
    if config.scheduler.level not in _LEVELS:
        errors.append(f"scheduler.level must be one of {', '.join(_LEVELS)}, got '{config.scheduler.level}'")

    if not 0.0 <= config.timing.alpha <= 1.0:
        errors.append(f"timing.alpha must be between 0 and 1, got {config.timing.alpha}")
    if config.timing.prune_days <= 0:
        errors.append(f"timing.prune_days must be > 0, got {config.timing.prune_days}")
    if config.timing.ms_per_line <= 0:
        errors.append(f"timing.ms_per_line must be > 0, got {config.timing.ms_per_line}")
    if not config.timing.timing_file:
        errors.append("timing.timing_file is required")

    return errors
