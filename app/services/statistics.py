"""Statistical helpers used by the insight rules.

Every function here is pure and total: empty or corrupt input resolves to a
neutral numeric default instead of raising, so rules can call them on any
category history without guarding.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(slots=True, frozen=True)
class SpendingAnalysis:
    mean: float
    std_dev: float
    count: int


@dataclass(slots=True, frozen=True)
class MonthlyComparison:
    current: float
    previous: float
    percent_change: float
    absolute_change: float


def mean(values: Optional[Iterable[float]]) -> float:
    """Return the arithmetic mean, or 0 for empty/absent input.

    >>> mean([100, 200, 300])
    200.0
    >>> mean([])
    0.0
    """
    if values is None:
        return 0.0
    items = [float(value) for value in values]
    if not items:
        return 0.0
    return sum(items) / len(items)


def std_dev(values: Optional[Iterable[float]], mean_value: Optional[float] = None) -> float:
    """Return the population standard deviation ``sqrt(sum((x - mean)^2) / n)``.

    Fewer than two samples yield 0. ``mean_value`` may be passed when the
    caller already computed it.
    """
    if values is None:
        return 0.0
    items = [float(value) for value in values]
    if len(items) < 2:
        return 0.0

    center = mean(items) if mean_value is None else float(mean_value)
    variance = sum((value - center) ** 2 for value in items) / len(items)
    return math.sqrt(variance)


def month_over_month(current: float, previous: float) -> float:
    """Return the percentage change ``(current - previous) / previous * 100``.

    A zero or non-finite ``previous`` and a non-finite ``current`` all mean
    "no signal" and return 0.
    """
    try:
        current = float(current)
        previous = float(previous)
    except (TypeError, ValueError):
        return 0.0
    if previous == 0 or not math.isfinite(previous) or not math.isfinite(current):
        return 0.0
    return (current - previous) / previous * 100


def is_outlier(value: float, mean_value: float, std_dev_value: float, threshold: float = 2) -> bool:
    """True when ``value`` lies strictly more than ``threshold`` deviations from the mean.

    A constant series (``std_dev_value == 0``) has no outliers.
    """
    if std_dev_value == 0 or not math.isfinite(std_dev_value):
        return False
    return abs(value - mean_value) / std_dev_value > threshold


def analyze_spending(values: Iterable[float]) -> SpendingAnalysis:
    items = [float(value) for value in values]
    center = mean(items)
    return SpendingAnalysis(mean=center, std_dev=std_dev(items, center), count=len(items))


def compare_monthly_spending(current: float, previous: float) -> MonthlyComparison:
    return MonthlyComparison(
        current=current,
        previous=previous,
        percent_change=month_over_month(current, previous),
        absolute_change=current - previous,
    )


__all__ = [
    "MonthlyComparison",
    "SpendingAnalysis",
    "analyze_spending",
    "compare_monthly_spending",
    "is_outlier",
    "mean",
    "std_dev",
    "month_over_month",
]
