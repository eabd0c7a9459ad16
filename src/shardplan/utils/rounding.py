"""Numeric helpers shared by the estimator, affinity model and scheduler."""

from __future__ import annotations

import math


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up.

    Persisted timing history uses this rounding; ``round()`` rounds halves to even.
    """
    return math.floor(value + 0.5)
