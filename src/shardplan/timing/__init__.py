"""Timing history, duration estimation and the file-affinity penalty."""

from shardplan.timing.affinity import DEFAULT_AFFINITY_PENALTY, derive_penalty
from shardplan.timing.estimator import (
    DEFAULT_TEST_DURATION,
    DurationIndex,
    Estimate,
    calculate_average_duration,
    estimate,
    estimate_file_duration,
    estimate_units,
)
from shardplan.timing.store import (
    MeasurementBatch,
    TimingRecord,
    TimingStore,
    calculate_ema,
    dumps,
    load_timing_file,
    loads,
    merge,
    prune,
    save_timing_file,
)

__all__ = [
    "DEFAULT_AFFINITY_PENALTY",
    "DEFAULT_TEST_DURATION",
    "DurationIndex",
    "Estimate",
    "MeasurementBatch",
    "TimingRecord",
    "TimingStore",
    "calculate_average_duration",
    "calculate_ema",
    "derive_penalty",
    "dumps",
    "estimate",
    "estimate_file_duration",
    "estimate_units",
    "load_timing_file",
    "loads",
    "merge",
    "prune",
    "save_timing_file",
]
