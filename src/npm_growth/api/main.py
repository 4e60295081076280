from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from npm_growth.config import DEFAULT_TOP_LIMIT, MAX_TOP_LIMIT
from npm_growth.growth import Trend, compute_metrics
from npm_growth.ranking import (
    SortKey,
    filter_by_trend,
    json_number,
    load_metrics,
    metrics_to_dict,
    sort_metrics,
    top_growing,
    trend_summary,
)
from npm_growth.storage.lancedb_store import LanceDBStore
from npm_growth.utils.time import parse_iso_date

logger = logging.getLogger("npm_growth.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.store = LanceDBStore()
    try:
        yield
    finally:
        app.state.store.close()
        app.state.store = None


app = FastAPI(title="npm Growth API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_request_start(request, call_next):
    logger.info(
        "request sent method=%s path=%s query=%s",
        request.method,
        request.url.path,
        request.url.query,
    )
    return await call_next(request)


def _store() -> LanceDBStore:
    store = getattr(app.state, "store", None)
    if store is None:
        store = LanceDBStore()
        app.state.store = store
    return store


def _iso(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    return str(value)


@app.get("/api/v1/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/packages")
def packages(include_inactive: bool = Query(False)) -> list[dict[str, Any]]:
    rows = _store().list_packages(include_inactive=include_inactive)
    return [
        {
            "package_name": row["package_name"],
            "description": row.get("description"),
            "repository": row.get("repository"),
            "homepage": row.get("homepage"),
            "latest_version": row.get("latest_version"),
            "license": row.get("license"),
            "is_active": bool(row.get("is_active")),
            "created_at": _iso(row.get("created_at")),
            "updated_at": _iso(row.get("updated_at")),
        }
        for row in rows
    ]


@app.get("/api/v1/metrics")
def metrics(
    sort: SortKey = Query(SortKey.GROWTH_RATE),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    trend: Trend | None = Query(None),
) -> dict[str, Any]:
    all_metrics = load_metrics(_store())
    selected = filter_by_trend(all_metrics, trend) if trend else all_metrics
    ranked = sort_metrics(selected, sort, descending=order == "desc")
    return {
        "generated_at": datetime.now(tz=timezone.utc).isoformat(),
        "count": len(ranked),
        "trends": {key.value: count for key, count in trend_summary(all_metrics).items()},
        "metrics": [metrics_to_dict(item) for item in ranked],
    }


@app.get("/api/v1/metrics/top")
def top_metrics(
    limit: int = Query(DEFAULT_TOP_LIMIT, ge=1, le=MAX_TOP_LIMIT),
) -> list[dict[str, Any]]:
    return [metrics_to_dict(item) for item in top_growing(load_metrics(_store()), limit)]


@app.get("/api/v1/series/{package_name:path}")
def series(
    package_name: str,
    start_date: str | None = Query(None, description="YYYY-MM-DD, inclusive"),
    end_date: str | None = Query(None, description="YYYY-MM-DD, inclusive"),
) -> dict[str, Any]:
    try:
        start_day = parse_iso_date(start_date) if start_date else None
        end_day = parse_iso_date(end_date) if end_date else None
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail="start_date/end_date must be YYYY-MM-DD"
        ) from exc

    store = _store()
    if store.get_package(package_name) is None:
        raise HTTPException(status_code=404, detail=f"Unknown package: {package_name}")

    points = store.query_range(package_name, start_day, end_day)
    weekly = store.get_weekly_stats(package_name)
    return {
        "package_name": package_name,
        "metrics": metrics_to_dict(compute_metrics(package_name, points)),
        "points": [
            {"date": point.date.isoformat(), "downloads": point.downloads}
            for point in points
        ],
        "weekly": [
            {
                "week_start": str(row["week_start"]),
                "total_downloads": int(row["total_downloads"]),
                "avg_downloads": int(row["avg_downloads"]),
                "growth_rate": json_number(row.get("growth_rate")),
                "velocity": json_number(row.get("velocity")),
            }
            for row in weekly
        ],
    }


@app.get("/api/v1/history/refresh-errors")
def refresh_errors(
    start_date: str = Query(..., description="Start date (YYYY-MM-DD, UTC inclusive)"),
    end_date: str = Query(..., description="End date (YYYY-MM-DD, UTC inclusive)"),
    limit: int = Query(500, ge=1, le=5000),
) -> dict[str, Any]:
    try:
        start_day = parse_iso_date(start_date)
        end_day = parse_iso_date(end_date)
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail="start_date/end_date must be YYYY-MM-DD"
        ) from exc
    if end_day < start_day:
        raise HTTPException(
            status_code=400, detail="end_date must be on or after start_date"
        )
    rows = _store().list_refresh_errors(
        start_day=start_day, end_day=end_day, limit=limit
    )
    return {
        "start_date": start_day.isoformat(),
        "end_date": end_day.isoformat(),
        "count": len(rows),
        "errors": [
            {
                **row,
                "started_at": _iso(row.get("started_at")),
                "finished_at": _iso(row.get("finished_at")),
            }
            for row in rows
        ],
    }
