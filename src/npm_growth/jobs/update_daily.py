from __future__ import annotations

import argparse
import time
from typing import Callable

from npm_growth.backfill import BackfillResult, update_package_latest
from npm_growth.config import REQUEST_DELAY_SECONDS
from npm_growth.errors import InvalidPackageName, StoreConnectionError, StorageError
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

JOB_NAME = "update_daily"


def run(
    *,
    run_id: str | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, int]:
    """Fetch the latest published week for every active package."""
    store = build_store()
    run_ctx = start_run(JOB_NAME, run_id=run_id)
    packages = store.list_active_packages()
    print(f"[update_daily] tracking {len(packages)} packages", flush=True)

    results: list[BackfillResult] = []
    with NpmRegistryClient() as client:
        for package_name in packages:
            try:
                result = update_package_latest(
                    package_name, client=client, store=store, run_id=run_ctx.run_id
                )
            except StoreConnectionError:
                raise
            except (InvalidPackageName, StorageError) as exc:
                result = BackfillResult(package_name=package_name, failed=1)
                result.errors.append(f"{package_name}: {exc}")
            results.append(result)

            if result.skipped:
                continue
            if result.saved:
                print(f"[update_daily] {package_name} saved", flush=True)
                try:
                    store.recompute_weekly_stats(package_name)
                except StoreConnectionError:
                    raise
                except StorageError as exc:
                    result.errors.append(f"{package_name}: {exc}")
            sleep(REQUEST_DELAY_SECONDS)

    summary = summarize(results)
    finish_run(store, run_ctx, summary=summary, errors=collect_errors(results))
    return summary


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Fetch the most recent weekly download count for tracked packages"
    )
    parser.add_argument("--run-id", default=None, help="Optional ingestion run id")
    add_logging_args(parser)
    args = parser.parse_args()
    configure_logging(args)

    result = run(run_id=args.run_id)
    print(format_summary(JOB_NAME, result))
    raise SystemExit(exit_code(result))


if __name__ == "__main__":
    main()
