"""
Numeric helpers for portfolio analytics
"""

from typing import Optional, Sequence

import numpy as np


def _to_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray([float(v) for v in values if v is not None], dtype=float)


def pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """
    Pearson correlation coefficient of two equally sized samples.

    Returns 0 when the samples differ in length or are empty. It also returns 0
    when one of them has zero variance. The result is clipped to [-1, 1].
    """
    if len(x) != len(y) or len(x) == 0:
        return 0.0

    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    n = len(xs)

    numerator = n * np.sum(xs * ys) - np.sum(xs) * np.sum(ys)
    denominator = np.sqrt(
        (n * np.sum(xs ** 2) - np.sum(xs) ** 2) * (n * np.sum(ys ** 2) - np.sum(ys) ** 2)
    )

    if denominator == 0 or np.isnan(denominator):
        return 0.0
    # Rounding can push a perfectly linear pair just past 1
    return float(np.clip(numerator / denominator, -1.0, 1.0))


def paired_values(x: Sequence[Optional[float]], y: Sequence[Optional[float]]):
    """Drop positions where either side is missing."""
    pairs = [(a, b) for a, b in zip(x, y) if a is not None and b is not None]
    return [float(a) for a, _ in pairs], [float(b) for _, b in pairs]


def mean(values: Sequence[float]) -> float:
    arr = _to_array(values)
    if arr.size == 0:
        return 0.0
    return float(np.mean(arr))


def variance(values: Sequence[float]) -> float:
    """Population variance."""
    arr = _to_array(values)
    if arr.size == 0:
        return 0.0
    return float(np.var(arr))


def standard_deviation(values: Sequence[float]) -> float:
    """Population standard deviation."""
    arr = _to_array(values)
    if arr.size == 0:
        return 0.0
    return float(np.std(arr))


def median(values: Sequence[float]) -> float:
    arr = _to_array(values)
    if arr.size == 0:
        return 0.0
    return float(np.median(arr))

