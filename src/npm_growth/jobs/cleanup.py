from __future__ import annotations

import argparse
from datetime import date, timedelta

from npm_growth.config import RETENTION_DAYS
from npm_growth.jobs.common import build_store, finish_run, start_run
from npm_growth.utils.time import utc_now

JOB_NAME = "cleanup"


def retention_cutoff(days_to_keep: int, today: date | None = None) -> date:
    if days_to_keep <= 0:
        raise ValueError("days_to_keep must be > 0")
    return (today or utc_now().date()) - timedelta(days=days_to_keep)


def run(*, days_to_keep: int = RETENTION_DAYS) -> dict[str, int]:
    cutoff = retention_cutoff(days_to_keep)
    store = build_store()
    run_ctx = start_run(JOB_NAME)

    print(f"[cleanup] deleting points before {cutoff.isoformat()}", flush=True)
    deleted = store.delete_downloads_older_than(cutoff)
    finish_run(
        store,
        run_ctx,
        summary={"succeeded": deleted, "skipped": 0, "failed": 0},
        errors=[],
    )
    return {"deleted": deleted, "days_to_keep": days_to_keep}


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Delete stored download points older than the retention window"
    )
    parser.add_argument(
        "--days-to-keep",
        type=int,
        default=RETENTION_DAYS,
        help="Keep points whose bucket ended within this many days",
    )
    args = parser.parse_args()

    result = run(days_to_keep=args.days_to_keep)
    print(
        "cleanup complete: "
        f"deleted={result['deleted']} days_to_keep={result['days_to_keep']}"
    )


if __name__ == "__main__":
    main()
