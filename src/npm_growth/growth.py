"""Growth metrics over a package's download history.

Everything here is a pure function of the download counts it is given; the
store is never touched. Histories are ordered oldest first.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from npm_growth.models import DownloadPoint
from npm_growth.utils.time import coerce_date

# Classification policy. Rates and accelerations are in percentage points.
ACCELERATION_THRESHOLD = 10.0
GROWING_THRESHOLD = 20.0
DECLINING_THRESHOLD = -10.0
# Share of consecutive growth-rate pairs that must be increasing.
EXPONENTIAL_RATIO = 0.6

# Growth from a zero baseline to any positive count. Python floats represent
# infinity, so the sentinel is math.inf and compares above every finite rate.
INFINITE_GROWTH = math.inf


class Trend(str, Enum):
    EXPONENTIAL = "exponential"
    ACCELERATING = "accelerating"
    GROWING = "growing"
    STABLE = "stable"
    DECLINING = "declining"


@dataclass(frozen=True)
class GrowthMetrics:
    package_name: str
    current_downloads: int
    previous_downloads: int
    growth_rate: float
    acceleration: float | None
    is_exponential: bool
    trend: Trend
    data_points: int

    @property
    def has_infinite_growth(self) -> bool:
        return math.isinf(self.growth_rate) and self.growth_rate > 0


def growth_rate(current: int, previous: int) -> float:
    """Percentage change from `previous` to `current`."""
    if previous == 0:
        return INFINITE_GROWTH if current > 0 else 0.0
    return (current - previous) / previous * 100


def growth_rates(history: Sequence[int]) -> list[float]:
    return [
        growth_rate(history[i], history[i - 1]) for i in range(1, len(history))
    ]


def calculate_acceleration(history: Sequence[int]) -> float | None:
    """Change between the last two growth rates, or None below three points."""
    if len(history) < 3:
        return None
    recent = growth_rate(history[-1], history[-2])
    previous = growth_rate(history[-2], history[-3])
    return recent - previous


def is_exponential_growth(history: Sequence[int]) -> bool:
    if len(history) < 3:
        return False
    rates = growth_rates(history)
    comparisons = len(rates) - 1
    if comparisons <= 0:
        return False
    increasing = sum(1 for i in range(1, len(rates)) if rates[i] > rates[i - 1])
    return increasing / comparisons > EXPONENTIAL_RATIO


def determine_trend(
    rate: float, acceleration: float | None, is_exponential: bool
) -> Trend:
    # Exponential outranks accelerating; some dashboards checked these in the
    # opposite order, this one is authoritative.
    if is_exponential:
        return Trend.EXPONENTIAL
    if acceleration is not None and acceleration > ACCELERATION_THRESHOLD:
        return Trend.ACCELERATING
    if rate > GROWING_THRESHOLD:
        return Trend.GROWING
    if rate > DECLINING_THRESHOLD:
        return Trend.STABLE
    return Trend.DECLINING


def _clean_count(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, float) and math.isnan(value):
        return 0
    return max(0, int(value))


def metrics_from_history(package_name: str, history: Sequence[int]) -> GrowthMetrics:
    """Growth metrics for a download history already ordered oldest first."""
    counts = [_clean_count(value) for value in history]
    if len(counts) < 2:
        return GrowthMetrics(
            package_name=package_name,
            current_downloads=counts[0] if counts else 0,
            previous_downloads=0,
            growth_rate=0.0,
            acceleration=None,
            is_exponential=False,
            trend=Trend.STABLE,
            data_points=len(counts),
        )

    current = counts[-1]
    previous = counts[-2]
    rate = growth_rate(current, previous)
    acceleration = calculate_acceleration(counts)
    exponential = is_exponential_growth(counts)
    return GrowthMetrics(
        package_name=package_name,
        current_downloads=current,
        previous_downloads=previous,
        growth_rate=rate,
        acceleration=acceleration,
        is_exponential=exponential,
        trend=determine_trend(rate, acceleration, exponential),
        data_points=len(counts),
    )


def _point_date_and_count(point: DownloadPoint | Mapping[str, Any]) -> tuple[Any, Any]:
    if isinstance(point, DownloadPoint):
        return point.date, point.downloads
    return coerce_date(point["date"]), point.get("downloads")


def compute_metrics(
    package_name: str, points: Iterable[DownloadPoint | Mapping[str, Any]]
) -> GrowthMetrics:
    """Growth metrics for points in any order.

    Points are sorted by date before anything is computed; the last two
    points by date are the current and previous buckets.
    """
    dated = sorted(
        (_point_date_and_count(point) for point in points), key=lambda item: item[0]
    )
    return metrics_from_history(package_name, [count for _day, count in dated])
