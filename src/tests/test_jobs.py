from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from npm_growth.backfill import BackfillResult
from npm_growth.errors import PackageNotFound, StorageError
from npm_growth.jobs import (
    backfill as backfill_job,
    cleanup,
    common,
    recompute_weekly,
    track_package,
    untrack,
    update_daily,
)
from npm_growth.models import PackageInfo
from npm_growth.sources.npm_client import DownloadCount


class _FakeStore:
    def __init__(self, active: list[str] | None = None) -> None:
        self.active = list(active or [])
        self.saved: dict[tuple[str, date], int] = {}
        self.history_rows: list[dict[str, object]] = []
        self.packages: list[str] = []
        self.recomputed: list[str] = []
        self.broken_recompute: set[str] = set()
        self.deleted_before: date | None = None

    def list_active_packages(self):
        return list(self.active)

    def exists(self, package_name, day):
        return (package_name, day) in self.saved

    def upsert(self, package_name, day, downloads, *, ingestion_run_id=""):
        self.saved[(package_name, day)] = downloads
        return {"inserted": 1, "updated": 0}

    def upsert_package(self, info):
        self.packages.append(info.name)

    def recompute_weekly_stats(self, package_name):
        if package_name in self.broken_recompute:
            raise StorageError("commit conflict")
        self.recomputed.append(package_name)
        return 4

    def deactivate_package(self, package_name):
        return package_name in self.active

    def delete_downloads_older_than(self, cutoff):
        self.deleted_before = cutoff
        return 7

    def upsert_history(self, row):
        self.history_rows.append(dict(row))
        return {"inserted": 1, "updated": 0}


class _FakeClient:
    missing: set[str] = set()
    counts: dict[str, int | None] = {}

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return None

    def fetch_package_info(self, package):
        if package in self.missing:
            raise PackageNotFound(package, "not found on npm")
        return PackageInfo(name=package)

    def fetch_downloads(self, package, start, end):
        if package in self.missing:
            raise PackageNotFound(package, "package not found")
        downloads = self.counts.get(package, 50)
        return DownloadCount(package, start.isoformat(), end.isoformat(), downloads)


@pytest.fixture
def fake_client(monkeypatch):
    _FakeClient.missing = set()
    _FakeClient.counts = {}
    for module in (track_package, backfill_job, update_daily):
        monkeypatch.setattr(module, "NpmRegistryClient", _FakeClient)
    return _FakeClient


def _use_store(monkeypatch, module, store) -> None:
    monkeypatch.setattr(module, "build_store", lambda **_kwargs: store)


def test_run_status_and_exit_code() -> None:
    assert common.run_status(succeeded=3, failed=0) == "success"
    assert common.run_status(succeeded=0, failed=0) == "success"
    assert common.run_status(succeeded=2, failed=1) == "partial"
    assert common.run_status(succeeded=0, failed=2) == "failed"

    assert common.exit_code({"succeeded": 0, "failed": 2}) == 1
    assert common.exit_code({"succeeded": 1, "failed": 2}) == 0
    assert common.exit_code({"succeeded": 0, "failed": 0}) == 0


def test_summarize_counts_packages_not_points() -> None:
    results = [
        BackfillResult("a", saved=10, missed=2),
        BackfillResult("b", skipped=53),
        BackfillResult("c", not_found=True),
        BackfillResult("d", missed=53),
    ]

    summary = common.summarize(results)

    assert summary == {
        "succeeded": 1,
        "skipped": 1,
        "failed": 2,
        "saved": 10,
        "missed": 55,
    }


def test_new_run_id_embeds_job_and_timestamp() -> None:
    run_id = common.new_run_id(
        "backfill", datetime(2026, 2, 12, 8, 30, tzinfo=timezone.utc)
    )

    assert run_id.startswith("backfill:20260212T083000Z:")


def test_track_package_job_records_partial_run(monkeypatch, fake_client, capsys) -> None:
    store = _FakeStore()
    _use_store(monkeypatch, track_package, store)
    fake_client.missing = {"gone-forever"}
    sleeps: list[float] = []

    result = track_package.run(
        ["react", "gone-forever", "Bad Name"], weeks_back=2, sleep=sleeps.append
    )

    assert result["succeeded"] == 1
    assert result["failed"] == 2
    assert result["saved"] == 3
    assert store.packages == ["react"]
    assert store.recomputed == ["react"]
    history = store.history_rows[-1]
    assert history["job_name"] == "track_package"
    assert history["status"] == "partial"
    assert "gone-forever" in str(history["error_summary"])
    assert sleeps.count(track_package.PACKAGE_DELAY_SECONDS) >= 2
    assert "[track] gone-forever rejected" in capsys.readouterr().out


def test_backfill_job_defaults_to_active_packages(monkeypatch, fake_client) -> None:
    store = _FakeStore(active=["vite", "esbuild"])
    _use_store(monkeypatch, backfill_job, store)
    fake_client.counts = {"esbuild": 0}

    result = backfill_job.run(weeks_back=1, sleep=lambda _s: None)

    assert result["succeeded"] == 1
    assert result["failed"] == 1
    assert result["saved"] == 2
    assert store.recomputed == ["vite"]
    assert store.history_rows[-1]["status"] == "partial"
    assert store.history_rows[-1]["points_saved"] == 2


def test_update_daily_saves_latest_bucket_once(monkeypatch, fake_client) -> None:
    store = _FakeStore(active=["hono", "koa"])
    _use_store(monkeypatch, update_daily, store)
    fake_client.counts = {"koa": 0}

    first = update_daily.run(sleep=lambda _s: None)
    second = update_daily.run(sleep=lambda _s: None)

    assert first["succeeded"] == 2
    assert sorted(downloads for downloads in store.saved.values()) == [0, 50]
    assert second == {"succeeded": 0, "skipped": 2, "failed": 0, "saved": 0, "missed": 0}
    assert [row["status"] for row in store.history_rows] == ["success", "success"]


def test_update_daily_failed_when_nothing_succeeds(monkeypatch, fake_client) -> None:
    store = _FakeStore(active=["gone-forever"])
    _use_store(monkeypatch, update_daily, store)
    fake_client.missing = {"gone-forever"}

    result = update_daily.run(sleep=lambda _s: None)

    assert result["failed"] == 1
    assert common.exit_code(result) == 1
    assert store.history_rows[-1]["status"] == "failed"


def test_recompute_weekly_absorbs_per_package_failures(monkeypatch, capsys) -> None:
    store = _FakeStore(active=["react", "vue"])
    store.broken_recompute = {"vue"}
    _use_store(monkeypatch, recompute_weekly, store)

    result = recompute_weekly.run()

    assert result == {"succeeded": 1, "skipped": 0, "failed": 1, "weeks": 4}
    assert store.history_rows[-1]["status"] == "partial"
    assert "[weekly] vue rolled back" in capsys.readouterr().out


def test_cleanup_deletes_before_retention_cutoff(monkeypatch) -> None:
    store = _FakeStore()
    _use_store(monkeypatch, cleanup, store)
    monkeypatch.setattr(
        cleanup, "utc_now", lambda: datetime(2026, 2, 15, tzinfo=timezone.utc)
    )

    result = cleanup.run(days_to_keep=30)

    assert result == {"deleted": 7, "days_to_keep": 30}
    assert store.deleted_before == date(2026, 1, 16)


def test_cleanup_rejects_non_positive_window() -> None:
    with pytest.raises(ValueError):
        cleanup.retention_cutoff(0)


def test_untrack_deactivates_known_packages(monkeypatch) -> None:
    store = _FakeStore(active=["recoil"])
    _use_store(monkeypatch, untrack, store)

    assert untrack.run(["recoil", "never-tracked"]) == {"deactivated": 1, "unknown": 1}


def test_report_ranks_and_filters(monkeypatch) -> None:
    from npm_growth.jobs import report
    from npm_growth.models import DownloadPoint

    series = {"vite": [100, 120, 180, 400], "lodash": [1000, 990, 980, 900]}

    class _ReportStore:
        def list_active_packages(self):
            return list(series)

        def list_downloads(self, *, start=None, end=None, packages=None):
            return [
                DownloadPoint(name, date(2026, 1, 1 + 7 * i), count)
                for name in packages
                for i, count in enumerate(series[name])
            ]

    _use_store(monkeypatch, report, _ReportStore())

    top = report.run()
    assert top["packages"] == 2
    assert [m["package_name"] for m in top["metrics"]] == ["vite", "lodash"]
    assert top["trends"]["exponential"] == 1

    stable = report.run(trend="stable", sort="current_downloads", ascending=True)
    assert [m["package_name"] for m in stable["metrics"]] == ["lodash"]
