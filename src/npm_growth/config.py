from __future__ import annotations

import os
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[2]
DATA_DIR = ROOT_DIR / "data"


def _unquote_env_value(value: str) -> str:
    stripped = value.strip()
    if len(stripped) >= 2 and stripped[0] == stripped[-1] and stripped[0] in {"'", '"'}:
        return stripped[1:-1]
    return stripped


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue
        key, raw_value = line.split("=", 1)
        key = key.strip()
        if not key or key in os.environ:
            continue
        os.environ[key] = _unquote_env_value(raw_value)


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    return float(raw) if raw else default


_load_env_file(ROOT_DIR / ".env")

LANCEDB_URI = (os.getenv("NPM_GROWTH_LANCEDB_URI") or "").strip() or str(
    DATA_DIR / "lancedb"
)
LANCEDB_API_KEY = (os.getenv("LANCEDB_API_KEY") or "").strip()
LANCEDB_HOST_OVERRIDE = (os.getenv("LANCEDB_HOST_OVERRIDE") or "").strip()
LANCEDB_REGION = (os.getenv("LANCEDB_REGION") or "us-east-1").strip() or "us-east-1"

NPM_REGISTRY_BASE_URL = (
    os.getenv("NPM_REGISTRY_BASE_URL") or "https://registry.npmjs.org"
).rstrip("/")
NPM_DOWNLOADS_BASE_URL = (
    os.getenv("NPM_DOWNLOADS_BASE_URL") or "https://api.npmjs.org/downloads"
).rstrip("/")
USER_AGENT = "npm-growth/0.1.0"

REQUEST_TIMEOUT_SECONDS = _env_int("NPM_GROWTH_TIMEOUT_SECONDS", 10)

# npm publishes download counts with a delay of two to three days.
PUBLICATION_DELAY_DAYS = _env_int("NPM_GROWTH_PUBLICATION_DELAY_DAYS", 3)
DEFAULT_WEEKS_BACK = _env_int("NPM_GROWTH_WEEKS_BACK", 52)
REQUEST_DELAY_SECONDS = _env_float("NPM_GROWTH_REQUEST_DELAY_SECONDS", 0.15)
PACKAGE_DELAY_SECONDS = _env_float("NPM_GROWTH_PACKAGE_DELAY_SECONDS", 0.5)
RETENTION_DAYS = _env_int("NPM_GROWTH_RETENTION_DAYS", 400)

DEFAULT_TOP_LIMIT = 10
MAX_TOP_LIMIT = 500
