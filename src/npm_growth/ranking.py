"""Grouping, ranking and filtering of per-package growth metrics."""

from __future__ import annotations

import math
from collections import Counter, defaultdict
from enum import Enum
from typing import Any, Iterable

from npm_growth.growth import GrowthMetrics, Trend, compute_metrics, growth_rate
from npm_growth.models import DownloadPoint
from npm_growth.utils.time import week_start


class SortKey(str, Enum):
    GROWTH_RATE = "growth_rate"
    ACCELERATION = "acceleration"
    CURRENT_DOWNLOADS = "current_downloads"
    NAME = "name"


def group_by_package(points: Iterable[DownloadPoint]) -> dict[str, list[DownloadPoint]]:
    grouped: dict[str, list[DownloadPoint]] = defaultdict(list)
    for point in points:
        grouped[point.package_name].append(point)
    return dict(grouped)


def build_metrics(points: Iterable[DownloadPoint]) -> list[GrowthMetrics]:
    return [
        compute_metrics(package_name, package_points)
        for package_name, package_points in group_by_package(points).items()
    ]


def _sort_value(metrics: GrowthMetrics, key: SortKey) -> Any:
    if key is SortKey.GROWTH_RATE:
        return metrics.growth_rate
    if key is SortKey.ACCELERATION:
        # (False, 0) sorts below every (True, value): missing acceleration
        # ranks lowest.
        if metrics.acceleration is None:
            return (False, 0.0)
        return (True, metrics.acceleration)
    if key is SortKey.CURRENT_DOWNLOADS:
        return metrics.current_downloads
    if key is SortKey.NAME:
        return metrics.package_name
    raise ValueError(f"Unknown sort key: {key}")


def sort_metrics(
    metrics: Iterable[GrowthMetrics],
    key: SortKey | str = SortKey.GROWTH_RATE,
    *,
    descending: bool = True,
) -> list[GrowthMetrics]:
    """Stable sort; entries with equal keys keep their input order."""
    sort_key = SortKey(key)
    return sorted(
        metrics, key=lambda item: _sort_value(item, sort_key), reverse=descending
    )


def sort_by_growth(metrics: Iterable[GrowthMetrics]) -> list[GrowthMetrics]:
    """Exponential packages first, then by descending growth rate."""
    by_rate = sorted(metrics, key=lambda item: item.growth_rate, reverse=True)
    return sorted(by_rate, key=lambda item: not item.is_exponential)


def top_growing(metrics: Iterable[GrowthMetrics], limit: int = 10) -> list[GrowthMetrics]:
    return sort_by_growth(metrics)[: max(0, limit)]


def filter_by_trend(
    metrics: Iterable[GrowthMetrics], trend: Trend | str
) -> list[GrowthMetrics]:
    wanted = Trend(trend)
    return [item for item in metrics if item.trend is wanted]


def trend_summary(metrics: Iterable[GrowthMetrics]) -> dict[Trend, int]:
    counts = Counter(item.trend for item in metrics)
    return {trend: counts.get(trend, 0) for trend in Trend}


def weekly_rollup(points: Iterable[DownloadPoint]) -> list[dict[str, Any]]:
    """Aggregate one package's points into Monday-aligned weeks.

    Each row carries the week-over-week growth rate and its change
    (velocity); both are None where there is no earlier week to compare.
    """
    totals: dict[str, dict[Any, list[int]]] = defaultdict(lambda: defaultdict(list))
    for point in points:
        totals[point.package_name][week_start(point.date)].append(int(point.downloads))

    rows: list[dict[str, Any]] = []
    for package_name, weeks in totals.items():
        previous_total: int | None = None
        previous_rate: float | None = None
        for week in sorted(weeks):
            counts = weeks[week]
            total = sum(counts)
            rate = None if previous_total is None else growth_rate(total, previous_total)
            velocity = (
                None if rate is None or previous_rate is None else rate - previous_rate
            )
            rows.append(
                {
                    "package_name": package_name,
                    "week_start": week.isoformat(),
                    "total_downloads": total,
                    "avg_downloads": total // len(counts),
                    "growth_rate": rate,
                    "velocity": velocity,
                }
            )
            previous_total = total
            previous_rate = rate
    return rows


def json_number(value: float | None) -> float | str | None:
    """JSON has no infinity or NaN; render them as a string and null."""
    if value is None or math.isnan(value):
        return None
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    return value


def metrics_to_dict(metrics: GrowthMetrics) -> dict[str, Any]:
    return {
        "package_name": metrics.package_name,
        "current_downloads": metrics.current_downloads,
        "previous_downloads": metrics.previous_downloads,
        "growth_rate": json_number(metrics.growth_rate),
        "acceleration": json_number(metrics.acceleration),
        "is_exponential": metrics.is_exponential,
        "trend": metrics.trend.value,
        "data_points": metrics.data_points,
    }


def load_metrics(store, packages: Iterable[str] | None = None) -> list[GrowthMetrics]:
    """Metrics for every active package (or `packages`) that has stored points."""
    names = list(packages) if packages is not None else store.list_active_packages()
    return build_metrics(store.list_downloads(packages=names))
