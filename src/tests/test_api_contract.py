from datetime import date, datetime, timezone

from fastapi.testclient import TestClient

from npm_growth.api import main as api_main
from npm_growth.models import DownloadPoint

WEEKS = [date(2026, 1, 15), date(2026, 1, 22), date(2026, 1, 29), date(2026, 2, 5)]


class _FakeStore:
    def __init__(self) -> None:
        self._points = {
            "vite": [100, 120, 180, 400],
            "@tanstack/react-query": [0, 0, 0, 300],
            "lodash": [1000, 990, 980, 900],
        }

    def list_active_packages(self):
        return sorted(self._points)

    def list_packages(self, *, include_inactive=False):
        return [
            {
                "package_name": name,
                "description": None,
                "is_active": True,
                "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
                "updated_at": datetime(2026, 2, 1, tzinfo=timezone.utc),
            }
            for name in self.list_active_packages()
        ]

    def list_downloads(self, *, start=None, end=None, packages=None):
        return [
            DownloadPoint(name, day, count)
            for name in packages
            for day, count in zip(WEEKS, self._points[name])
        ]

    def get_package(self, package_name):
        if package_name not in self._points:
            return None
        return {"package_name": package_name}

    def query_range(self, package_name, start=None, end=None):
        return [
            point
            for point in self.list_downloads(packages=[package_name])
            if (start is None or point.date >= start) and (end is None or point.date <= end)
        ]

    def get_weekly_stats(self, package_name):
        return [
            {
                "week_start": "2026-02-02",
                "total_downloads": 400,
                "avg_downloads": 400,
                "growth_rate": float("inf"),
                "velocity": None,
            }
        ]

    def list_refresh_errors(self, *, start_day, end_day, limit=500):
        assert start_day.isoformat() == "2026-02-01"
        assert end_day.isoformat() == "2026-02-05"
        assert limit == 50
        return [
            {
                "ingestion_run_id": "run-1",
                "job_name": "update_daily",
                "status": "partial",
                "started_at": datetime(2026, 2, 1, 9, tzinfo=timezone.utc),
                "finished_at": datetime(2026, 2, 1, 9, 1, tzinfo=timezone.utc),
                "error_summary": "timeout",
            }
        ]


def _client(monkeypatch) -> TestClient:
    monkeypatch.setattr(api_main, "_store", lambda: _FakeStore())
    return TestClient(api_main.app)


def test_health(monkeypatch) -> None:
    response = _client(monkeypatch).get("/api/v1/health")

    assert response.json() == {"status": "ok"}


def test_packages_listing(monkeypatch) -> None:
    payload = _client(monkeypatch).get("/api/v1/packages").json()

    assert [row["package_name"] for row in payload] == [
        "@tanstack/react-query",
        "lodash",
        "vite",
    ]
    assert payload[0]["created_at"].startswith("2026-01-01")


def test_metrics_sorted_and_filtered(monkeypatch) -> None:
    client = _client(monkeypatch)

    payload = client.get("/api/v1/metrics?sort=current_downloads&order=asc").json()
    assert [m["package_name"] for m in payload["metrics"]] == [
        "@tanstack/react-query",
        "vite",
        "lodash",
    ]
    assert payload["trends"]["declining"] == 0

    declining = client.get("/api/v1/metrics?trend=stable").json()
    assert [m["package_name"] for m in declining["metrics"]] == ["lodash"]

    assert client.get("/api/v1/metrics?sort=bogus").status_code == 422


def test_top_metrics_render_infinite_growth(monkeypatch) -> None:
    payload = _client(monkeypatch).get("/api/v1/metrics/top?limit=2").json()

    assert [m["package_name"] for m in payload] == ["vite", "@tanstack/react-query"]
    assert payload[1]["growth_rate"] == "Infinity"
    assert payload[0]["trend"] == "exponential"


def test_series_for_scoped_package(monkeypatch) -> None:
    client = _client(monkeypatch)

    response = client.get(
        "/api/v1/series/@tanstack/react-query?start_date=2026-01-22"
    )
    assert response.status_code == 200
    payload = response.json()
    assert [p["date"] for p in payload["points"]] == [
        "2026-01-22",
        "2026-01-29",
        "2026-02-05",
    ]
    assert payload["weekly"][0]["growth_rate"] == "Infinity"

    assert client.get("/api/v1/series/never-tracked").status_code == 404
    assert client.get("/api/v1/series/vite?start_date=yesterday").status_code == 400


def test_refresh_errors_endpoint(monkeypatch) -> None:
    response = _client(monkeypatch).get(
        "/api/v1/history/refresh-errors?start_date=2026-02-01&end_date=2026-02-05&limit=50"
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["count"] == 1
    assert payload["errors"][0]["error_summary"] == "timeout"
    assert payload["errors"][0]["finished_at"].startswith("2026-02-01T09:01")


def test_refresh_errors_rejects_reversed_window(monkeypatch) -> None:
    response = _client(monkeypatch).get(
        "/api/v1/history/refresh-errors?start_date=2026-02-05&end_date=2026-02-01"
    )

    assert response.status_code == 400
