from __future__ import annotations

import argparse
import json
from typing import Any

from npm_growth.config import DEFAULT_TOP_LIMIT, MAX_TOP_LIMIT
from npm_growth.growth import Trend
from npm_growth.jobs.common import build_store
from npm_growth.ranking import (
    SortKey,
    filter_by_trend,
    load_metrics,
    metrics_to_dict,
    sort_metrics,
    top_growing,
    trend_summary,
)


def run(
    *,
    sort: str | None = None,
    ascending: bool = False,
    trend: str | None = None,
    limit: int = DEFAULT_TOP_LIMIT,
) -> dict[str, Any]:
    """Ranked growth metrics for the active packages.

    Without `sort` the ranking is the top-growing order: exponential packages
    first, then by growth rate.
    """
    limit = max(1, min(limit, MAX_TOP_LIMIT))
    store = build_store()
    metrics = load_metrics(store)
    total = len(metrics)
    summary = trend_summary(metrics)
    if trend:
        metrics = filter_by_trend(metrics, trend)
    if sort:
        ranked = sort_metrics(metrics, sort, descending=not ascending)[:limit]
    else:
        ranked = top_growing(metrics, limit)
    return {
        "packages": total,
        "trends": {key.value: count for key, count in summary.items()},
        "metrics": [metrics_to_dict(item) for item in ranked],
    }


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Print ranked npm package growth metrics as JSON"
    )
    parser.add_argument(
        "--sort",
        choices=[key.value for key in SortKey],
        default=None,
        help="Sort key (default: top growing)",
    )
    parser.add_argument("--ascending", action="store_true", help="Sort ascending")
    parser.add_argument(
        "--trend",
        choices=[trend.value for trend in Trend],
        default=None,
        help="Only include packages with this trend",
    )
    parser.add_argument("--limit", type=int, default=DEFAULT_TOP_LIMIT)
    args = parser.parse_args()

    result = run(
        sort=args.sort, ascending=args.ascending, trend=args.trend, limit=args.limit
    )
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
