"""Persistent per-test timing history.

Timing data lives in a single JSON document (``.shardplan/timing.json`` by
default) that is read at the start of ``assign`` and rewritten by
``merge-timing`` after every CI run.  Durations are smoothed with an
exponential moving average so one slow run does not reshuffle every shard.

All operations are functional: ``merge`` and ``prune`` return new stores and
never touch their input.  Only unreadable storage raises; a corrupt document,
an unknown schema version, or a missing file all load as an empty store.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Collection, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from shardplan.errors import ConfigurationError, TimingStoreError
from shardplan.models.test_id import group_of
from shardplan.utils.rounding import round_half_up

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
"""The only document version ``loads`` accepts."""

DEFAULT_EMA_ALPHA = 0.3
"""Weight of the newest measurement in the moving average."""

DEFAULT_PRUNE_DAYS = 30
"""Records not seen for this many days are dropped by ``prune``."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _duration(value: Any) -> int:
    duration = int(value)
    if duration < 0:
        msg = f"duration must be >= 0, got {duration}"
        raise ValueError(msg)
    return duration


# ── Data models ───────────────────────────────────────────────────


@dataclass(frozen=True)
class TimingRecord:
    """Smoothed timing history for one test."""

    group: str
    """Owning file of the test."""

    duration: int
    """EMA-smoothed duration in milliseconds."""

    runs: int
    """Number of measurements merged so far."""

    last_seen: datetime
    """When the test was last measured (timezone-aware)."""


@dataclass(frozen=True)
class TimingStore:
    """Versioned map of test id to ``TimingRecord``."""

    schema_version: int = SCHEMA_VERSION
    updated_at: datetime = field(default_factory=_utcnow)
    records: dict[str, TimingRecord] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.records)


@dataclass
class MeasurementBatch:
    """Durations measured by one shard for one Playwright project."""

    lane_index: int
    """Shard index (1-based) that produced the measurements."""

    group_label: str
    """Playwright project name the shard ran."""

    measurements: dict[str, int] = field(default_factory=dict)
    """Canonical test id to measured duration in milliseconds."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "laneIndex": self.lane_index,
            "groupLabel": self.group_label,
            "measurements": dict(self.measurements),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MeasurementBatch:
        """Rebuild a batch produced by ``to_dict``."""
        measurements = data.get("measurements", {})
        if not isinstance(measurements, dict):
            measurements = {}
        return cls(
            lane_index=int(data.get("laneIndex", 1)),
            group_label=str(data.get("groupLabel", "default")),
            measurements={str(k): _duration(v) for k, v in measurements.items()},
        )


def empty_store() -> TimingStore:
    """Return a fresh store stamped with the current schema version."""
    return TimingStore()


# ── Serialisation ─────────────────────────────────────────────────


def _parse_timestamp(value: object) -> datetime:
    if not isinstance(value, str):
        msg = f"expected ISO-8601 string, got {type(value).__name__}"
        raise TypeError(msg)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _read_v2(data: dict[str, Any]) -> TimingStore:
    raw_records = data.get("records", {})
    if not isinstance(raw_records, dict):
        msg = "records must be an object"
        raise TypeError(msg)

    records: dict[str, TimingRecord] = {}
    for test_id, raw in raw_records.items():
        if not isinstance(raw, dict):
            logger.debug("Skipping malformed timing record for %s", test_id)
            continue
        try:
            records[str(test_id)] = TimingRecord(
                group=str(raw.get("group", group_of(str(test_id)))),
                duration=_duration(raw["duration"]),
                runs=int(raw.get("runs", 1)),
                last_seen=_parse_timestamp(raw["lastSeen"]),
            )
        except (KeyError, TypeError, ValueError, OverflowError) as exc:
            logger.debug("Skipping malformed timing record for %s: %s", test_id, exc)

    return TimingStore(
        schema_version=SCHEMA_VERSION,
        updated_at=_parse_timestamp(data.get("updatedAt", _utcnow().isoformat())),
        records=records,
    )


_READERS: dict[int, Callable[[dict[str, Any]], TimingStore]] = {
    SCHEMA_VERSION: _read_v2,
}


def loads(text: str | None) -> TimingStore:
    """Deserialise a timing document.

    Returns an empty store for missing input, invalid JSON, an unexpected
    shape, or any schema version other than ``SCHEMA_VERSION``.
    """
    if not text:
        return empty_store()

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Timing data is not valid JSON (%s), using empty data", exc)
        return empty_store()

    if not isinstance(data, dict):
        logger.warning("Timing data is not a JSON object, using empty data")
        return empty_store()

    version = data.get("schemaVersion")
    reader = _READERS.get(version) if type(version) is int else None
    if reader is None:
        logger.warning(
            "Timing data version mismatch: expected %d, got %r. Using empty data.",
            SCHEMA_VERSION,
            version,
        )
        return empty_store()

    try:
        return reader(data)
    except (TypeError, ValueError, OverflowError) as exc:
        logger.warning("Timing data is malformed (%s), using empty data", exc)
        return empty_store()


def dumps(store: TimingStore) -> str:
    """Serialise *store* to a JSON document with every field present."""
    payload = {
        "schemaVersion": store.schema_version,
        "updatedAt": store.updated_at.isoformat(),
        "records": {
            test_id: {
                "group": record.group,
                "duration": record.duration,
                "runs": record.runs,
                "lastSeen": record.last_seen.isoformat(),
            }
            for test_id, record in store.records.items()
        },
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


def load_timing_file(path: Path) -> TimingStore:
    """Load a timing document from disk.

    A missing file is a cold start and yields an empty store.

    Raises:
        TimingStoreError: If the file exists but cannot be read.
    """
    if not path.exists():
        logger.debug("No timing file found at %s", path)
        return empty_store()

    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        logger.warning("Timing file %s is not UTF-8 (%s), using empty data", path, exc)
        return empty_store()
    except OSError as exc:
        msg = f"Cannot read timing file {path}: {exc}"
        raise TimingStoreError(msg) from exc

    store = loads(text)
    logger.info("Loaded timing data for %d tests from %s", len(store), path)
    return store


def save_timing_file(path: Path, store: TimingStore) -> None:
    """Write *store* to *path*, creating parent directories.

    Raises:
        TimingStoreError: If the file cannot be written.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(dumps(store) + "\n", encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot write timing file {path}: {exc}"
        raise TimingStoreError(msg) from exc
    logger.info("Saved timing data for %d tests to %s", len(store), path)


# ── Updates ───────────────────────────────────────────────────────


def calculate_ema(old_duration: float, new_duration: float, alpha: float = DEFAULT_EMA_ALPHA) -> int:
    """Blend a new measurement into the running average.

    ``alpha * new + (1 - alpha) * old``, rounded; higher *alpha* follows
    recent runs more closely.
    """
    return round_half_up(alpha * new_duration + (1 - alpha) * old_duration)


def merge(
    existing: TimingStore | None,
    batches: Iterable[MeasurementBatch],
    alpha: float = DEFAULT_EMA_ALPHA,
    *,
    now: datetime | None = None,
) -> TimingStore:
    """Fold measurement batches into the timing history.

    Known tests get an EMA-blended duration and one more run; unknown tests
    start a record with ``runs=1``.  The same id appearing in several batches
    is folded in batch order.

    Raises:
        ConfigurationError: If *alpha* is outside ``[0, 1]``.
    """
    if not 0.0 <= alpha <= 1.0:
        msg = f"alpha must be between 0 and 1, got {alpha}"
        raise ConfigurationError(msg)

    stamp = now or _utcnow()
    records = dict(existing.records) if existing is not None else {}
    merged_count = 0

    for batch in batches:
        for test_id, measured in batch.measurements.items():
            previous = records.get(test_id)
            if previous is not None:
                records[test_id] = TimingRecord(
                    group=previous.group,
                    duration=calculate_ema(previous.duration, measured, alpha),
                    runs=previous.runs + 1,
                    last_seen=stamp,
                )
            else:
                records[test_id] = TimingRecord(
                    group=group_of(test_id),
                    duration=int(measured),
                    runs=1,
                    last_seen=stamp,
                )
            merged_count += 1

    logger.debug("Merged %d measurements (alpha=%.2f)", merged_count, alpha)
    return TimingStore(schema_version=SCHEMA_VERSION, updated_at=stamp, records=records)


def prune(
    store: TimingStore,
    max_age_days: float = DEFAULT_PRUNE_DAYS,
    known_ids: Collection[str] | None = None,
    *,
    now: datetime | None = None,
) -> TimingStore:
    """Drop stale records.

    A record is removed when it was last seen before ``now - max_age_days``,
    or, when *known_ids* is given, when its id is not in *known_ids* (the test
    no longer exists upstream).
    """
    stamp = now or _utcnow()
    cutoff = stamp - timedelta(days=max_age_days)
    known = set(known_ids) if known_ids is not None else None

    kept = {
        test_id: record
        for test_id, record in store.records.items()
        if record.last_seen >= cutoff and (known is None or test_id in known)
    }

    dropped = len(store.records) - len(kept)
    if dropped:
        logger.debug("Pruned %d timing records", dropped)
    return TimingStore(schema_version=store.schema_version, updated_at=stamp, records=kept)


# ── Queries ───────────────────────────────────────────────────────


def get_unit_duration(store: TimingStore, test_id: str) -> int | None:
    """Return the recorded duration of one test, if any."""
    record = store.records.get(test_id)
    return record.duration if record is not None else None


def get_group_duration(store: TimingStore, group: str) -> int | None:
    """Return the summed duration of every recorded test in *group*."""
    durations = [r.duration for r in store.records.values() if r.group == group]
    if not durations:
        return None
    return sum(durations)
