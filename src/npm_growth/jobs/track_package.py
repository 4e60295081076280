from __future__ import annotations

import argparse
import time
from typing import Callable

from npm_growth.backfill import BackfillResult, track_package
from npm_growth.config import DEFAULT_WEEKS_BACK, PACKAGE_DELAY_SECONDS
from npm_growth.errors import (
    InvalidPackageName,
    ProviderError,
    StoreConnectionError,
    StorageError,
)
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
from npm_growth.models import DEFAULT_PACKAGES
from npm_growth.sources.npm_client import NpmRegistryClient

JOB_NAME = "track_package"


def run(
    package_names: list[str],
    *,
    weeks_back: int = DEFAULT_WEEKS_BACK,
    run_id: str | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, int]:
    store = build_store()
    run_ctx = start_run(JOB_NAME, run_id=run_id)
    results: list[BackfillResult] = []

    with NpmRegistryClient() as client:
        for position, package_name in enumerate(package_names):
            print(f"[track] {package_name}", flush=True)
            try:
                result = track_package(
                    package_name,
                    client=client,
                    store=store,
                    weeks_back=weeks_back,
                    run_id=run_ctx.run_id,
                    sleep=sleep,
                )
            except StoreConnectionError:
                raise
            except (InvalidPackageName, ProviderError, StorageError) as exc:
                print(f"[track] {package_name} rejected: {exc}", flush=True)
                result = BackfillResult(package_name=package_name, failed=1)
                result.errors.append(str(exc))
            else:
                print(
                    f"[track] {package_name} saved={result.saved} "
                    f"missed={result.missed} skipped={result.skipped}",
                    flush=True,
                )
            results.append(result)
            if position < len(package_names) - 1:
                sleep(PACKAGE_DELAY_SECONDS)

    summary = summarize(results)
    finish_run(store, run_ctx, summary=summary, errors=collect_errors(results))
    return summary


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Start tracking npm packages and backfill their history"
    )
    parser.add_argument("packages", nargs="*", help="npm package names")
    parser.add_argument(
        "--curated",
        action="store_true",
        help="Also track the built-in list of popular packages",
    )
    parser.add_argument("--weeks-back", type=int, default=DEFAULT_WEEKS_BACK)
    parser.add_argument("--run-id", default=None, help="Optional ingestion run id")
    add_logging_args(parser)
    args = parser.parse_args()
    configure_logging(args)

    names = list(args.packages)
    if args.curated:
        names.extend(name for name in DEFAULT_PACKAGES if name not in names)
    if not names:
        parser.error("give at least one package name or --curated")

    result = run(names, weeks_back=args.weeks_back, run_id=args.run_id)
    print(format_summary(JOB_NAME, result))
    raise SystemExit(exit_code(result))


if __name__ == "__main__":
    main()
