"""Serial, rate-limited collection of weekly download buckets.

Every bucket is fetched and written on its own: a provider miss or a failed
write is counted and the walk moves on. Writes are idempotent upserts, so an
interrupted run can simply be started again.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, time as dtime, timedelta, timezone
from typing import Callable, Iterable

from npm_growth.config import (
    DEFAULT_WEEKS_BACK,
    PACKAGE_DELAY_SECONDS,
    PUBLICATION_DELAY_DAYS,
    REQUEST_DELAY_SECONDS,
)
from npm_growth.errors import (
    InvalidPackageName,
    PackageNotFound,
    ProviderUnavailable,
    StorageError,
    StoreConnectionError,
)
from npm_growth.models import Bucket
from npm_growth.sources.npm_client import NpmRegistryClient, validate_package_name
from npm_growth.storage.lancedb_store import LanceDBStore
from npm_growth.utils.time import data_available_until, utc_now

logger = logging.getLogger(__name__)

BUCKET_DAYS = 7
PROGRESS_EVERY = 10


@dataclass
class BackfillResult:
    package_name: str
    saved: int = 0
    missed: int = 0
    skipped: int = 0
    failed: int = 0
    not_found: bool = False
    errors: list[str] = field(default_factory=list)


def weekly_buckets(cutoff: date, weeks_back: int = DEFAULT_WEEKS_BACK) -> list[Bucket]:
    """Buckets ending at `cutoff` and every 7 days before it, newest first."""
    if weeks_back < 0:
        raise ValueError("weeks_back must be >= 0")
    buckets: list[Bucket] = []
    for i in range(weeks_back + 1):
        end = cutoff - timedelta(days=BUCKET_DAYS * i)
        buckets.append(Bucket(start=end - timedelta(days=BUCKET_DAYS - 1), end=end))
    return buckets


def _is_future(bucket: Bucket, now: datetime) -> bool:
    return datetime.combine(bucket.end, dtime.min, tzinfo=timezone.utc) > now


def _collect_bucket(
    package_name: str,
    bucket: Bucket,
    *,
    client: NpmRegistryClient,
    store: LanceDBStore,
    result: BackfillResult,
    accept_zero: bool,
    run_id: str,
) -> None:
    try:
        count = client.fetch_downloads(package_name, bucket.start, bucket.end)
    except ProviderUnavailable as exc:
        logger.warning("No data for %s ending %s: %s", package_name, bucket.end, exc)
        result.missed += 1
        return

    downloads = count.downloads
    if downloads is None or downloads < 0 or (downloads == 0 and not accept_zero):
        result.missed += 1
        return

    try:
        store.upsert(package_name, bucket.end, downloads, ingestion_run_id=run_id)
    except StoreConnectionError:
        raise
    except StorageError as exc:
        logger.warning("Could not save %s for %s: %s", package_name, bucket.end, exc)
        result.failed += 1
        result.errors.append(f"{package_name}@{bucket.end}: {exc}")
        return
    result.saved += 1


def backfill_package(
    package_name: str,
    *,
    client: NpmRegistryClient,
    store: LanceDBStore,
    weeks_back: int = DEFAULT_WEEKS_BACK,
    now: datetime | None = None,
    delay_days: int = PUBLICATION_DELAY_DAYS,
    skip_existing: bool = True,
    request_delay: float = REQUEST_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
    run_id: str = "",
) -> BackfillResult:
    """Fill up to `weeks_back + 1` weekly buckets for one package.

    The walk starts at the provider's publication cutoff and moves back one
    week at a time. Only StoreConnectionError and InvalidPackageName escape;
    every other failure is counted on the result.
    """
    validate_package_name(package_name)
    now = now or utc_now()
    cutoff = data_available_until(now, delay_days)
    buckets = weekly_buckets(cutoff, weeks_back)
    result = BackfillResult(package_name=package_name)

    for index, bucket in enumerate(buckets):
        if _is_future(bucket, now):
            continue
        if skip_existing:
            try:
                if store.exists(package_name, bucket.end):
                    result.skipped += 1
                    continue
            except StoreConnectionError:
                raise
            except StorageError as exc:
                # Fall through and fetch; the upsert is safe either way.
                logger.debug("Existence check failed for %s: %s", package_name, exc)

        try:
            _collect_bucket(
                package_name,
                bucket,
                client=client,
                store=store,
                result=result,
                accept_zero=False,
                run_id=run_id,
            )
        except PackageNotFound as exc:
            logger.warning("Stopping backfill of %s: %s", package_name, exc)
            result.not_found = True
            result.errors.append(str(exc))
            break
        finally:
            sleep(request_delay)

        if (index + 1) % PROGRESS_EVERY == 0:
            logger.info("%s: %d/%d weeks", package_name, index + 1, len(buckets))

    logger.info(
        "%s: saved=%d missed=%d skipped=%d failed=%d",
        package_name,
        result.saved,
        result.missed,
        result.skipped,
        result.failed,
    )
    return result


def backfill_packages(
    package_names: Iterable[str],
    *,
    client: NpmRegistryClient,
    store: LanceDBStore,
    package_delay: float = PACKAGE_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
    **options,
) -> list[BackfillResult]:
    """Backfill several packages one after another."""
    results: list[BackfillResult] = []
    names = list(package_names)
    for position, package_name in enumerate(names):
        try:
            result = backfill_package(
                package_name, client=client, store=store, sleep=sleep, **options
            )
        except InvalidPackageName as exc:
            logger.warning("%s", exc)
            result = BackfillResult(package_name=package_name, failed=1)
            result.errors.append(str(exc))
        results.append(result)
        if position < len(names) - 1:
            sleep(package_delay)
    return results


def track_package(
    package_name: str,
    *,
    client: NpmRegistryClient,
    store: LanceDBStore,
    **options,
) -> BackfillResult:
    """Start tracking a package: store its metadata, then backfill it.

    Raises InvalidPackageName or PackageNotFound when the package cannot be
    tracked; nothing is written in that case.
    """
    validate_package_name(package_name)
    info = client.fetch_package_info(package_name)
    store.upsert_package(info)
    logger.info("Tracking %s", info.name)

    result = backfill_package(info.name, client=client, store=store, **options)
    try:
        store.recompute_weekly_stats(info.name)
    except StoreConnectionError:
        raise
    except StorageError as exc:
        logger.warning("Weekly stats for %s not recomputed: %s", info.name, exc)
        result.errors.append(str(exc))
    return result


def update_package_latest(
    package_name: str,
    *,
    client: NpmRegistryClient,
    store: LanceDBStore,
    now: datetime | None = None,
    delay_days: int = PUBLICATION_DELAY_DAYS,
    run_id: str = "",
) -> BackfillResult:
    """Fetch the most recent published bucket unless it is already stored.

    Unlike the historical walk, a zero count is a real observation here and
    is saved.
    """
    validate_package_name(package_name)
    bucket = weekly_buckets(data_available_until(now or utc_now(), delay_days), 0)[0]
    result = BackfillResult(package_name=package_name)

    if store.exists(package_name, bucket.end):
        result.skipped += 1
        return result

    try:
        _collect_bucket(
            package_name,
            bucket,
            client=client,
            store=store,
            result=result,
            accept_zero=True,
            run_id=run_id,
        )
    except PackageNotFound as exc:
        logger.warning("%s", exc)
        result.not_found = True
        result.failed += 1
        result.errors.append(str(exc))
    return result
