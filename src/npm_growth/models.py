from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

import pyarrow as pa


@dataclass(frozen=True)
class PackageInfo:
    name: str
    description: str | None = None
    repository: str | None = None
    homepage: str | None = None
    latest_version: str | None = None
    license: str | None = None


@dataclass(frozen=True)
class DownloadPoint:
    package_name: str
    date: date
    downloads: int


@dataclass(frozen=True)
class Bucket:
    """A 7-day window; the stored point is keyed on its end date."""

    start: date
    end: date


PACKAGES_SCHEMA = pa.schema(
    [
        pa.field("package_name", pa.string()),
        pa.field("description", pa.string()),
        pa.field("repository", pa.string()),
        pa.field("homepage", pa.string()),
        pa.field("latest_version", pa.string()),
        pa.field("license", pa.string()),
        pa.field("is_active", pa.bool_()),
        pa.field("created_at", pa.timestamp("us", tz="UTC")),
        pa.field("updated_at", pa.timestamp("us", tz="UTC")),
    ]
)

DOWNLOADS_SCHEMA = pa.schema(
    [
        pa.field("package_name", pa.string()),
        pa.field("bucket_end", pa.string()),
        pa.field("downloads", pa.int64()),
        pa.field("observed_at", pa.timestamp("us", tz="UTC")),
        pa.field("ingestion_run_id", pa.string()),
    ]
)

WEEKLY_STATS_SCHEMA = pa.schema(
    [
        pa.field("package_name", pa.string()),
        pa.field("week_start", pa.string()),
        pa.field("total_downloads", pa.int64()),
        pa.field("avg_downloads", pa.int64()),
        pa.field("growth_rate", pa.float64()),
        pa.field("velocity", pa.float64()),
        pa.field("computed_at", pa.timestamp("us", tz="UTC")),
    ]
)

HISTORY_SCHEMA = pa.schema(
    [
        pa.field("ingestion_run_id", pa.string()),
        pa.field("job_name", pa.string()),
        pa.field("started_at", pa.timestamp("us", tz="UTC")),
        pa.field("finished_at", pa.timestamp("us", tz="UTC")),
        pa.field("status", pa.string()),
        pa.field("succeeded", pa.int64()),
        pa.field("skipped", pa.int64()),
        pa.field("failed", pa.int64()),
        pa.field("points_saved", pa.int64()),
        pa.field("error_summary", pa.string()),
    ]
)


# Popular packages tracked by `npm-growth-track --curated`.
DEFAULT_PACKAGES: list[str] = [
    # frameworks
    "react", "vue", "@angular/core", "svelte", "solid-js", "next", "nuxt",
    "astro", "@builder.io/qwik",
    # build tools
    "vite", "webpack", "esbuild", "rollup", "parcel", "turbo", "tsup",
    # react ecosystem
    "react-dom", "react-router", "react-router-dom", "@tanstack/react-query",
    "zustand", "jotai", "recoil", "redux", "@reduxjs/toolkit",
    # styling
    "tailwindcss", "styled-components", "@emotion/react", "sass", "postcss",
    # typescript and tooling
    "typescript", "tsx", "@types/node", "@types/react",
    # backend
    "express", "fastify", "hono", "koa", "@hono/node-server",
    # utilities
    "axios", "lodash", "date-fns", "dayjs", "zod", "yup", "nanoid", "uuid",
    # testing
    "vitest", "jest", "@testing-library/react", "playwright", "cypress",
    # ai
    "openai", "@langchain/core", "langchain", "@ai-sdk/openai", "ai",
    # monorepo
    "nx", "lerna",
    # database clients
    "@supabase/supabase-js", "prisma", "@prisma/client", "drizzle-orm",
    # newer tooling
    "@biomejs/biome", "oxlint",
]


def now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


def normalize_repository_url(raw: Any) -> str | None:
    if isinstance(raw, dict):
        raw = raw.get("url")
    if not raw:
        return None
    url = re.sub(r"^git\+", "", str(raw).strip())
    return re.sub(r"\.git$", "", url)


def package_row(
    info: PackageInfo,
    *,
    created_at: datetime | None = None,
    is_active: bool = True,
) -> dict[str, Any]:
    updated_at = now_utc()
    return {
        "package_name": info.name,
        "description": info.description,
        "repository": info.repository,
        "homepage": info.homepage,
        "latest_version": info.latest_version,
        "license": info.license,
        "is_active": is_active,
        "created_at": created_at or updated_at,
        "updated_at": updated_at,
    }


def download_row(
    point: DownloadPoint, *, ingestion_run_id: str = ""
) -> dict[str, Any]:
    return {
        "package_name": point.package_name,
        "bucket_end": point.date.isoformat(),
        "downloads": int(point.downloads),
        "observed_at": now_utc(),
        "ingestion_run_id": ingestion_run_id,
    }
