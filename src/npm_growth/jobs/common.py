from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable
from uuid import uuid4

from npm_growth.backfill import BackfillResult
from npm_growth.storage.lancedb_store import LanceDBStore
from npm_growth.utils.logging import setup_logging
from npm_growth.utils.time import utc_now


@dataclass
class RunContext:
    job_name: str
    run_id: str
    started_at: datetime


def new_run_id(job_name: str, reference: datetime | None = None) -> str:
    ts = (reference or utc_now()).astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"{job_name}:{ts}:{uuid4().hex[:8]}"


def build_store(*, reset_tables: bool = False) -> LanceDBStore:
    store = LanceDBStore()
    if reset_tables:
        store.reset_tables()
    store.ensure_tables()
    return store


def start_run(job_name: str, run_id: str | None = None) -> RunContext:
    return RunContext(
        job_name=job_name,
        run_id=run_id or new_run_id(job_name),
        started_at=datetime.now(tz=timezone.utc),
    )


def run_status(*, succeeded: int, failed: int) -> str:
    if failed == 0:
        return "success"
    if succeeded == 0:
        return "failed"
    return "partial"


def finish_run(
    store: LanceDBStore,
    run: RunContext,
    summary: dict[str, int],
    errors: list[str],
) -> str:
    status = run_status(succeeded=summary["succeeded"], failed=summary["failed"])
    store.upsert_history(
        {
            "ingestion_run_id": run.run_id,
            "job_name": run.job_name,
            "started_at": run.started_at,
            "finished_at": datetime.now(tz=timezone.utc),
            "status": status,
            "succeeded": summary["succeeded"],
            "skipped": summary.get("skipped", 0),
            "failed": summary["failed"],
            "points_saved": summary.get("saved", 0),
            "error_summary": " | ".join(errors) if errors else None,
        }
    )
    return status


def summarize(results: Iterable[BackfillResult]) -> dict[str, int]:
    """Per-package outcome counts for a batch of backfill results."""
    summary = {"succeeded": 0, "skipped": 0, "failed": 0, "saved": 0, "missed": 0}
    for result in results:
        summary["saved"] += result.saved
        summary["missed"] += result.missed
        if result.saved > 0:
            summary["succeeded"] += 1
        elif result.failed or result.not_found:
            summary["failed"] += 1
        elif result.skipped:
            summary["skipped"] += 1
        else:
            # Every bucket came back empty.
            summary["failed"] += 1
    return summary


def exit_code(result: dict[str, int]) -> int:
    """Non-zero only when the job did nothing useful and something failed."""
    return 1 if result.get("succeeded", 0) == 0 and result.get("failed", 0) > 0 else 0


def add_logging_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show per-bucket debug output"
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Only show warnings and errors"
    )


def configure_logging(args: argparse.Namespace) -> None:
    setup_logging(verbose=args.verbose, quiet=args.quiet)


def collect_errors(results: Iterable[BackfillResult]) -> list[str]:
    return [error for result in results for error in result.errors]


def format_summary(job_name: str, result: dict[str, int]) -> str:
    return (
        f"{job_name} complete: succeeded={result['succeeded']} "
        f"skipped={result['skipped']} failed={result['failed']}"
    )
