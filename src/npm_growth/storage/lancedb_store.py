from __future__ import annotations

import logging
import time
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable
from urllib.parse import urlparse

import lancedb
import pyarrow as pa

from npm_growth.config import (
    LANCEDB_API_KEY,
    LANCEDB_HOST_OVERRIDE,
    LANCEDB_REGION,
    LANCEDB_URI,
)
from npm_growth.errors import StorageError, StoreConnectionError
from npm_growth.models import (
    DOWNLOADS_SCHEMA,
    HISTORY_SCHEMA,
    PACKAGES_SCHEMA,
    WEEKLY_STATS_SCHEMA,
    DownloadPoint,
    PackageInfo,
    download_row,
    now_utc,
    package_row,
)
from npm_growth.ranking import weekly_rollup
from npm_growth.utils.time import coerce_date

logger = logging.getLogger(__name__)

TABLE_SCHEMAS = {
    "packages": PACKAGES_SCHEMA,
    "downloads": DOWNLOADS_SCHEMA,
    "weekly_stats": WEEKLY_STATS_SCHEMA,
    "history": HISTORY_SCHEMA,
}
# Conflict keys for merge-insert. A row is identified by exactly these columns.
TABLE_KEYS: dict[str, tuple[str, ...]] = {
    "packages": ("package_name",),
    "downloads": ("package_name", "bucket_end"),
    "weekly_stats": ("package_name", "week_start"),
    "history": ("ingestion_run_id",),
}
EXPECTED_TABLES = tuple(TABLE_SCHEMAS)
CREATE_READY_TIMEOUT_SECONDS = 30.0
CREATE_READY_SLEEP_SECONDS = 0.5
CREATE_READY_MAX_ATTEMPTS = int(
    CREATE_READY_TIMEOUT_SECONDS / CREATE_READY_SLEEP_SECONDS
)
ENTERPRISE_SCHEME = "db://"


def _sql_literal(value: object) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def _is_connection_error(exc: BaseException) -> bool:
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    msg = str(exc).lower()
    connection_tokens = [
        "connection refused",
        "connection reset",
        "failed to connect",
        "could not connect",
        "error trying to connect",
        "name or service not known",
        "dns error",
        "network is unreachable",
        "no route to host",
        "broken pipe",
    ]
    return any(token in msg for token in connection_tokens)


def _storage_error(message: str, exc: BaseException) -> StorageError:
    if _is_connection_error(exc):
        return StoreConnectionError(f"{message}: store unreachable ({exc})")
    return StorageError(f"{message}: {exc}")


class LanceDBStore:
    """Download time series and package registry on LanceDB.

    Every write is a merge-insert on the table's key columns, so repeated or
    concurrent writes of the same key converge to one row. Works against a
    local directory or a LanceDB Enterprise `db://` URI.
    """

    @staticmethod
    def _validate_host_override(host_override: str) -> str:
        assert host_override, (
            "Missing LANCEDB_HOST_OVERRIDE. Add LANCEDB_HOST_OVERRIDE=<enterprise host> "
            "to .env when NPM_GROWTH_LANCEDB_URI points at a db:// database."
        )
        parsed = urlparse(host_override)
        assert parsed.scheme in {"http", "https"} and parsed.netloc, (
            "Invalid LANCEDB_HOST_OVERRIDE. Expected an absolute URL such as "
            "https://<your-enterprise-host>"
        )
        return host_override

    def __init__(self, uri: str | None = None):
        self.uri = uri or LANCEDB_URI
        if self.uri.startswith(ENTERPRISE_SCHEME):
            assert LANCEDB_API_KEY, (
                "Missing LANCEDB_API_KEY. Add LANCEDB_API_KEY=<enterprise api key> "
                "to .env when NPM_GROWTH_LANCEDB_URI points at a db:// database."
            )
            host_override = self._validate_host_override(LANCEDB_HOST_OVERRIDE)
            connect_kwargs: dict[str, Any] = {
                "uri": self.uri,
                "api_key": LANCEDB_API_KEY,
                "host_override": host_override,
                "region": LANCEDB_REGION,
            }
        else:
            Path(self.uri).mkdir(parents=True, exist_ok=True)
            connect_kwargs = {"uri": self.uri}
        try:
            self.db = lancedb.connect(**connect_kwargs)
        except Exception as exc:
            raise StoreConnectionError(
                f"Could not connect to LanceDB at {self.uri}: {exc}"
            ) from exc

    def close(self) -> None:
        close = getattr(self.db, "close", None)
        if callable(close):
            close()

    # -- tables ---------------------------------------------------------

    def list_tables(self) -> set[str]:
        return {str(name) for name in self.db.table_names(limit=1000)}

    def reset_tables(self) -> None:
        existing = self.list_tables()
        for table_name in EXPECTED_TABLES:
            if table_name in existing:
                self.db.drop_table(table_name)

    def create_required_tables(
        self, on_table: Callable[[str], None] | None = None
    ) -> None:
        for table_name in EXPECTED_TABLES:
            if on_table is not None:
                on_table(table_name)
            self._create_or_open_ready(table_name)

    def ensure_tables(self) -> None:
        self.create_required_tables()

    def _create_or_open_ready(self, table_name: str) -> None:
        schema = TABLE_SCHEMAS[table_name]
        last_error: Exception | None = None
        for _attempt in range(CREATE_READY_MAX_ATTEMPTS):
            try:
                self.db.create_table(table_name, schema=schema, exist_ok=True)
                table = self.db.open_table(table_name)
                table.count_rows()
                return
            except Exception as exc:
                last_error = exc
                if self._is_terminal_table_error(exc):
                    raise StorageError(
                        f"Terminal error while ensuring table '{table_name}': {exc}"
                    ) from exc
                time.sleep(CREATE_READY_SLEEP_SECONDS)
        raise StoreConnectionError(
            f"Timed out ensuring table '{table_name}' after "
            f"{CREATE_READY_TIMEOUT_SECONDS:.0f}s. Last error: {last_error}"
        ) from last_error

    @staticmethod
    def _is_terminal_table_error(exc: Exception) -> bool:
        msg = str(exc).lower()
        terminal_tokens = [
            "401",
            "403",
            "unauthorized",
            "forbidden",
            "permission denied",
            "invalid api key",
            "invalid url",
            "schema",
            "type mismatch",
            "invalid type",
        ]
        transient_tokens = [
            "404",
            "503",
            "table not found",
            "_versions",
            "service unavailable",
            "temporarily unavailable",
            "timed out",
        ]
        if any(token in msg for token in transient_tokens):
            return False
        return any(token in msg for token in terminal_tokens)

    def _open_table(self, table_name: str):
        if table_name not in TABLE_SCHEMAS:
            raise ValueError(f"Unknown table: {table_name}")
        try:
            return self.db.open_table(table_name)
        except Exception as exc:
            raise _storage_error(f"Failed to open table '{table_name}'", exc) from exc

    # -- generic keyed access -------------------------------------------

    def _merge(self, table_name: str, rows: list[dict[str, Any]]) -> dict[str, int]:
        """Insert-or-update `rows` on the table's key in one atomic commit."""
        if not rows:
            return {"inserted": 0, "updated": 0}
        data = pa.Table.from_pylist(rows, schema=TABLE_SCHEMAS[table_name])
        table = self._open_table(table_name)
        try:
            result = (
                table.merge_insert(list(TABLE_KEYS[table_name]))
                .when_matched_update_all()
                .when_not_matched_insert_all()
                .execute(data)
            )
        except Exception as exc:
            raise _storage_error(f"Merge into '{table_name}' failed", exc) from exc
        return {
            "inserted": int(result.num_inserted_rows),
            "updated": int(result.num_updated_rows),
        }

    def _key_predicate(self, table_name: str, key: tuple[object, ...]) -> str:
        columns = TABLE_KEYS[table_name]
        if len(columns) != len(key):
            raise ValueError(f"Key for '{table_name}' must have {len(columns)} parts")
        return " AND ".join(
            f"{column} = {_sql_literal(value)}" for column, value in zip(columns, key)
        )

    def count_rows(self, table_name: str, where: str | None = None) -> int:
        table = self._open_table(table_name)
        try:
            if where:
                return int(table.count_rows(filter=where))
            return int(table.count_rows())
        except Exception as exc:
            raise _storage_error(f"Count on '{table_name}' failed", exc) from exc

    def query_table(
        self,
        table_name: str,
        *,
        where: str | None = None,
        columns: list[str] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        table = self._open_table(table_name)
        try:
            builder = table.query() if hasattr(table, "query") else table.search()
            if where:
                builder = builder.where(where)
            if columns:
                builder = builder.select(columns)
            if limit is not None:
                builder = builder.limit(limit)
            return builder.to_list()
        except Exception as exc:
            raise _storage_error(f"Query on '{table_name}' failed", exc) from exc

    def get_by_key(self, table_name: str, key: tuple[object, ...]) -> dict[str, Any] | None:
        rows = self.query_table(
            table_name, where=self._key_predicate(table_name, key), limit=1
        )
        return rows[0] if rows else None

    # -- download points ------------------------------------------------

    def upsert(
        self,
        package_name: str,
        day: date,
        downloads: int,
        *,
        ingestion_run_id: str = "",
    ) -> dict[str, int]:
        """Store one bucket count; replaces any count already stored for the day."""
        return self.upsert_downloads(
            [DownloadPoint(package_name=package_name, date=day, downloads=downloads)],
            ingestion_run_id=ingestion_run_id,
        )

    def upsert_downloads(
        self, points: Iterable[DownloadPoint], *, ingestion_run_id: str = ""
    ) -> dict[str, int]:
        rows: list[dict[str, Any]] = []
        for point in points:
            if point.downloads < 0:
                raise ValueError(
                    f"downloads must be >= 0, got {point.downloads} for "
                    f"{point.package_name} on {point.date}"
                )
            rows.append(download_row(point, ingestion_run_id=ingestion_run_id))
        return self._merge("downloads", rows)

    def exists(self, package_name: str, day: date) -> bool:
        predicate = self._key_predicate("downloads", (package_name, day.isoformat()))
        return self.count_rows("downloads", predicate) > 0

    def query_range(
        self,
        package_name: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[DownloadPoint]:
        """Points for one package between `start` and `end` inclusive, oldest first."""
        return self.list_downloads(start=start, end=end, packages=[package_name])

    def list_downloads(
        self,
        *,
        start: date | None = None,
        end: date | None = None,
        packages: Iterable[str] | None = None,
    ) -> list[DownloadPoint]:
        clauses: list[str] = []
        if packages is not None:
            names = [_sql_literal(name) for name in packages]
            if not names:
                return []
            clauses.append(f"package_name IN ({', '.join(names)})")
        if start is not None:
            clauses.append(f"bucket_end >= {_sql_literal(start.isoformat())}")
        if end is not None:
            clauses.append(f"bucket_end <= {_sql_literal(end.isoformat())}")
        rows = self.query_table(
            "downloads",
            where=" AND ".join(clauses) or None,
            columns=["package_name", "bucket_end", "downloads"],
        )
        points = [
            DownloadPoint(
                package_name=str(row["package_name"]),
                date=coerce_date(row["bucket_end"]),
                downloads=int(row["downloads"]),
            )
            for row in rows
        ]
        return sorted(points, key=lambda point: (point.package_name, point.date))

    def delete_downloads_older_than(self, cutoff: date) -> int:
        """Retention cleanup: drop points whose bucket ends before `cutoff`."""
        predicate = f"bucket_end < {_sql_literal(cutoff.isoformat())}"
        doomed = self.count_rows("downloads", predicate)
        if doomed == 0:
            return 0
        table = self._open_table("downloads")
        try:
            table.delete(predicate)
        except Exception as exc:
            raise _storage_error("Retention cleanup failed", exc) from exc
        logger.info("Deleted %d download points before %s", doomed, cutoff)
        return doomed

    # -- packages -------------------------------------------------------

    def upsert_package(self, info: PackageInfo) -> dict[str, int]:
        """Create or refresh package metadata; first-tracked time is kept."""
        existing = self.get_package(info.name)
        created_at = self._coerce_datetime(existing["created_at"]) if existing else None
        return self._merge("packages", [package_row(info, created_at=created_at)])

    def get_package(self, package_name: str) -> dict[str, Any] | None:
        return self.get_by_key("packages", (package_name,))

    def list_packages(self, *, include_inactive: bool = False) -> list[dict[str, Any]]:
        rows = self.query_table(
            "packages", where=None if include_inactive else "is_active = true"
        )
        return sorted(rows, key=lambda row: str(row["package_name"]))

    def list_active_packages(self) -> list[str]:
        return [str(row["package_name"]) for row in self.list_packages()]

    def deactivate_package(self, package_name: str) -> bool:
        existing = self.get_package(package_name)
        if existing is None:
            return False
        row = dict(existing)
        row["is_active"] = False
        row["updated_at"] = now_utc()
        self._merge("packages", [row])
        return True

    # -- weekly aggregates ----------------------------------------------

    def recompute_weekly_stats(self, package_name: str) -> int:
        """Rebuild the weekly aggregates of one package.

        All rows are written by a single merge-insert, which LanceDB commits
        as one version: either every week lands or none does. Weeks before
        the earliest remaining point (removed by retention) are deleted
        afterwards.
        """
        rows = weekly_rollup(self.query_range(package_name))
        computed_at = now_utc()
        for row in rows:
            row["computed_at"] = computed_at
        self._merge("weekly_stats", rows)
        self._delete_stale_weeks(package_name, rows[0]["week_start"] if rows else None)
        logger.debug("Recomputed %d weeks for %s", len(rows), package_name)
        return len(rows)

    def _delete_stale_weeks(self, package_name: str, first_week: str | None) -> None:
        predicate = f"package_name = {_sql_literal(package_name)}"
        if first_week is not None:
            predicate += f" AND week_start < {_sql_literal(first_week)}"
        if self.count_rows("weekly_stats", predicate) == 0:
            return
        table = self._open_table("weekly_stats")
        try:
            table.delete(predicate)
        except Exception as exc:
            raise _storage_error("Weekly cleanup failed", exc) from exc

    def get_weekly_stats(self, package_name: str) -> list[dict[str, Any]]:
        rows = self.query_table(
            "weekly_stats", where=f"package_name = {_sql_literal(package_name)}"
        )
        return sorted(rows, key=lambda row: str(row["week_start"]))

    # -- ingestion history ----------------------------------------------

    def upsert_history(self, row: dict[str, Any]) -> dict[str, int]:
        return self._merge("history", [self._normalize_history_row(row)])

    def list_refresh_errors(
        self,
        *,
        start_day: date,
        end_day: date,
        limit: int = 500,
    ) -> list[dict[str, Any]]:
        rows = self.query_table("history")
        matches: list[dict[str, Any]] = []
        for row in rows:
            error_summary = str(row.get("error_summary") or "").strip()
            if not error_summary:
                continue
            finished_at = self._coerce_datetime(
                row.get("finished_at") or row.get("started_at")
            )
            if not start_day <= finished_at.date() <= end_day:
                continue
            matches.append(
                {
                    "ingestion_run_id": row.get("ingestion_run_id"),
                    "job_name": row.get("job_name"),
                    "status": row.get("status"),
                    "started_at": row.get("started_at"),
                    "finished_at": row.get("finished_at"),
                    "error_summary": error_summary,
                }
            )
        matches.sort(
            key=lambda entry: self._coerce_datetime(
                entry.get("finished_at") or entry.get("started_at")
            ),
            reverse=True,
        )
        return matches[:limit]

    @staticmethod
    def _normalize_history_row(row: dict[str, Any]) -> dict[str, Any]:
        normalized = dict(row)
        for key in ("started_at", "finished_at"):
            value = normalized.get(key)
            if isinstance(value, str):
                normalized[key] = datetime.fromisoformat(value.replace("Z", "+00:00"))
            elif value is None:
                normalized[key] = datetime.now(tz=timezone.utc)
        for key in ("succeeded", "skipped", "failed", "points_saved"):
            normalized[key] = int(normalized.get(key, 0))
        normalized["error_summary"] = normalized.get("error_summary")
        return normalized

    @staticmethod
    def _coerce_datetime(value: Any) -> datetime:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc)
        if isinstance(value, date):
            return datetime.combine(value, datetime.min.time(), tzinfo=timezone.utc)
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw.replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            parsed = datetime.strptime(raw[:19], "%Y-%m-%d %H:%M:%S")
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
