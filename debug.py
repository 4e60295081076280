from __future__ import annotations

import argparse
import json
from datetime import date, timedelta
from typing import Any

from npm_growth.storage.lancedb_store import EXPECTED_TABLES, LanceDBStore
from npm_growth.utils.time import parse_iso_date


def _print(value: Any) -> None:
    print(json.dumps(value, indent=2, default=str))


def _days_ago(days: int) -> date:
    return date.today() - timedelta(days=days)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Inspect the npm-growth LanceDB tables directly. "
            "Uses NPM_GROWTH_LANCEDB_URI (and LANCEDB_* for db:// URIs)."
        )
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    packages = subparsers.add_parser("packages", help="List tracked packages")
    packages.add_argument(
        "--all", action="store_true", help="Include deactivated packages"
    )

    points = subparsers.add_parser("points", help="Stored weekly points for a package")
    points.add_argument("package", help="npm package name, e.g. @tanstack/react-query")
    points.add_argument("--days", type=int, default=120, help="Trailing day window")

    weekly = subparsers.add_parser("weekly", help="Weekly aggregates for a package")
    weekly.add_argument("package")

    history = subparsers.add_parser("history", help="Job runs that recorded errors")
    history.add_argument(
        "--start-date", default=None, help="YYYY-MM-DD (default: 30 days ago)"
    )
    history.add_argument(
        "--end-date",
        default=date.today().isoformat(),
        help="YYYY-MM-DD (default: today)",
    )
    history.add_argument("--limit", type=int, default=200)

    subparsers.add_parser("tables", help="Row counts per table")
    return parser.parse_args()


def _points_payload(store: LanceDBStore, package: str, days: int) -> dict[str, Any]:
    points = store.query_range(package, start=_days_ago(days) if days > 0 else None)
    return {
        "package": package,
        "days": days,
        "points": [
            {"date": point.date.isoformat(), "downloads": point.downloads}
            for point in points
        ],
    }


def main() -> None:
    args = parse_args()
    store = LanceDBStore()

    if args.command == "packages":
        _print(store.list_packages(include_inactive=args.all))
    elif args.command == "points":
        _print(_points_payload(store, args.package, args.days))
    elif args.command == "weekly":
        _print(store.get_weekly_stats(args.package))
    elif args.command == "history":
        start_day = (
            parse_iso_date(args.start_date) if args.start_date else _days_ago(30)
        )
        rows = store.list_refresh_errors(
            start_day=start_day,
            end_day=parse_iso_date(args.end_date),
            limit=args.limit,
        )
        _print({"count": len(rows), "errors": rows})
    elif args.command == "tables":
        existing = store.list_tables()
        _print(
            {name: store.count_rows(name) for name in EXPECTED_TABLES if name in existing}
        )
    else:
        raise RuntimeError(f"Unknown command: {args.command}")


if __name__ == "__main__":
    main()
