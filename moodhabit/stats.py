"""
Guarded numeric helpers shared by the analytics modules.
None of these ever return NaN or Infinity: empty input and zero
denominators fall back to 0.
"""
from __future__ import annotations

import math
import statistics
from typing import Iterable, Sequence

import numpy as np


def safe_ratio(numerator: float, denominator: float, default: float = 0.0) -> float:
    if not denominator:
        return default
    result = numerator / denominator
    return result if math.isfinite(result) else default


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    if not math.isfinite(value):
        return low
    return max(low, min(high, value))


def mean_or_zero(values: Iterable[float]) -> float:
    values = list(values)
    return statistics.fmean(values) if values else 0.0


def trend_slope(values: Sequence[float]) -> float:
    """
    Least-squares slope over index positions.
    Positive = rising, negative = falling.  0.0 with fewer than 2 points.
    """
    n = len(values)
    if n < 2:
        return 0.0
    xs = list(range(n))
    x_mean = statistics.fmean(xs)
    y_mean = statistics.fmean(values)
    num    = sum((x - x_mean) * (y - y_mean) for x, y in zip(xs, values))
    den    = sum((x - x_mean) ** 2 for x in xs)
    return safe_ratio(num, den)


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Population std / |mean|; 0 for fewer than 2 values or a flat series."""
    if len(values) < 2:
        return 0.0
    arr  = np.asarray(values, dtype=float)
    std  = float(arr.std())
    mean = abs(float(arr.mean()))
    if std == 0.0:
        return 0.0
    return safe_ratio(std, mean, default=std)
