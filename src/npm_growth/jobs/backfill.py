from __future__ import annotations

import argparse
import time
from typing import Callable

from npm_growth.backfill import backfill_packages
from npm_growth.config import DEFAULT_WEEKS_BACK
from npm_growth.errors import StoreConnectionError, StorageError
from npm_growth.jobs.common import (
    add_logging_args,
    build_store,
    collect_errors,
    configure_logging,
    exit_code,
    finish_run,
    format_summary,
    start_run,
    summarize,
)
from npm_growth.sources.npm_client import NpmRegistryClient

JOB_NAME = "backfill"


def run(
    *,
    package_names: list[str] | None = None,
    weeks_back: int = DEFAULT_WEEKS_BACK,
    refetch: bool = False,
    run_id: str | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, int]:
    store = build_store()
    run_ctx = start_run(JOB_NAME, run_id=run_id)
    names = list(package_names) if package_names else store.list_active_packages()
    print(
        f"[backfill] packages={len(names)} weeks_back={weeks_back} refetch={refetch}",
        flush=True,
    )

    with NpmRegistryClient() as client:
        results = backfill_packages(
            names,
            client=client,
            store=store,
            weeks_back=weeks_back,
            skip_existing=not refetch,
            run_id=run_ctx.run_id,
            sleep=sleep,
        )

    errors = collect_errors(results)
    for result in results:
        if result.saved == 0:
            continue
        try:
            store.recompute_weekly_stats(result.package_name)
        except StoreConnectionError:
            raise
        except StorageError as exc:
            errors.append(f"{result.package_name}: {exc}")

    summary = summarize(results)
    finish_run(store, run_ctx, summary=summary, errors=errors)
    summary["weeks_back"] = weeks_back
    return summary


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Backfill weekly download history for tracked npm packages"
    )
    parser.add_argument(
        "packages",
        nargs="*",
        help="Package names (default: every active tracked package)",
    )
    parser.add_argument(
        "--weeks-back",
        type=int,
        default=DEFAULT_WEEKS_BACK,
        help="Number of weekly buckets to walk back from the latest published one",
    )
    parser.add_argument(
        "--refetch",
        action="store_true",
        help="Fetch buckets even if they are already stored",
    )
    parser.add_argument("--run-id", default=None, help="Optional ingestion run id")
    add_logging_args(parser)
    args = parser.parse_args()
    configure_logging(args)

    result = run(
        package_names=args.packages or None,
        weeks_back=args.weeks_back,
        refetch=args.refetch,
        run_id=args.run_id,
    )
    print(format_summary(JOB_NAME, result) + f" points_saved={result['saved']}")
    raise SystemExit(exit_code(result))


if __name__ == "__main__":
    main()
