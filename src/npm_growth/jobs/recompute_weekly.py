from __future__ import annotations

import argparse

from npm_growth.errors import StoreConnectionError, StorageError
from npm_growth.jobs.common import (
    add_logging_args,
    build_store,
    configure_logging,
    exit_code,
    finish_run,
    format_summary,
    start_run,
)

JOB_NAME = "recompute_weekly"


def run(*, package_names: list[str] | None = None) -> dict[str, int]:
    store = build_store()
    run_ctx = start_run(JOB_NAME)
    names = list(package_names) if package_names else store.list_active_packages()

    summary = {"succeeded": 0, "skipped": 0, "failed": 0, "weeks": 0}
    errors: list[str] = []
    for package_name in names:
        try:
            weeks = store.recompute_weekly_stats(package_name)
        except StoreConnectionError:
            raise
        except StorageError as exc:
            # The package's weekly rows are left exactly as they were.
            print(f"[weekly] {package_name} rolled back: {exc}", flush=True)
            summary["failed"] += 1
            errors.append(f"{package_name}: {exc}")
            continue
        if weeks == 0:
            summary["skipped"] += 1
            continue
        summary["succeeded"] += 1
        summary["weeks"] += weeks
        print(f"[weekly] {package_name} weeks={weeks}", flush=True)

    finish_run(store, run_ctx, summary=summary, errors=errors)
    return summary


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Rebuild weekly download aggregates from stored points"
    )
    parser.add_argument(
        "packages",
        nargs="*",
        help="Package names (default: every active tracked package)",
    )
    add_logging_args(parser)
    args = parser.parse_args()
    configure_logging(args)

    result = run(package_names=args.packages or None)
    print(format_summary(JOB_NAME, result) + f" weeks={result['weeks']}")
    raise SystemExit(exit_code(result))


if __name__ == "__main__":
    main()
