from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any
from urllib.parse import quote

import requests

from npm_growth.config import (
    NPM_DOWNLOADS_BASE_URL,
    NPM_REGISTRY_BASE_URL,
    REQUEST_TIMEOUT_SECONDS,
    USER_AGENT,
)
from npm_growth.errors import InvalidPackageName, PackageNotFound, ProviderUnavailable
from npm_growth.models import PackageInfo, normalize_repository_url

logger = logging.getLogger(__name__)

MAX_PACKAGE_NAME_LENGTH = 214
_PACKAGE_NAME_PATTERN = re.compile(
    r"^(?:@[a-z0-9\-~][a-z0-9\-._~]*/)?[a-z0-9\-~][a-z0-9\-._~]*$"
)


def validate_package_name(name: str) -> str:
    """Return `name` unchanged if it is a valid npm package name.

    Raises InvalidPackageName otherwise, before any request is made.
    """
    if not name:
        raise InvalidPackageName(name, "name cannot be empty")
    if len(name) > MAX_PACKAGE_NAME_LENGTH:
        raise InvalidPackageName(
            name, f"name exceeds {MAX_PACKAGE_NAME_LENGTH} characters"
        )
    if not _PACKAGE_NAME_PATTERN.match(name):
        raise InvalidPackageName(
            name,
            "expected an optional @scope/ prefix followed by lowercase letters, "
            "digits, '-', '.', '_' or '~'",
        )
    return name


def is_valid_package_name(name: str) -> bool:
    try:
        validate_package_name(name)
    except InvalidPackageName:
        return False
    return True


@dataclass(frozen=True)
class DownloadCount:
    package: str
    start: str
    end: str
    downloads: int | None


class NpmRegistryClient:
    """Package metadata and point download counts from npm.

    Every request is bounded by `timeout_seconds`. Failures are raised as
    PackageNotFound (HTTP 404) or ProviderUnavailable (anything else) so a
    caller can skip a single point without losing the batch.
    """

    registry_url = NPM_REGISTRY_BASE_URL
    downloads_url = NPM_DOWNLOADS_BASE_URL

    def __init__(
        self,
        timeout_seconds: int = REQUEST_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update(
            {"Accept": "application/json", "User-Agent": USER_AGENT}
        )

    def __enter__(self) -> NpmRegistryClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self.session.close()

    def _get_json(self, package: str, url: str) -> dict[str, Any]:
        try:
            response = self.session.get(url, timeout=self.timeout_seconds)
        except requests.Timeout as exc:
            raise ProviderUnavailable(
                package, f"timed out after {self.timeout_seconds}s"
            ) from exc
        except requests.RequestException as exc:
            raise ProviderUnavailable(package, f"request failed: {exc}") from exc

        if response.status_code == 404:
            raise PackageNotFound(package, "not found on npm")
        if not response.ok:
            raise ProviderUnavailable(
                package, f"HTTP {response.status_code} from {url}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderUnavailable(package, "response was not valid JSON") from exc
        if not isinstance(payload, dict):
            raise ProviderUnavailable(package, "unexpected response shape")
        return payload

    def fetch_package_info(self, package: str) -> PackageInfo:
        validate_package_name(package)
        url = f"{self.registry_url}/{quote(package, safe='@')}"
        payload = self._get_json(package, url)

        license_value = payload.get("license")
        if isinstance(license_value, dict):
            license_value = license_value.get("type")
        dist_tags = payload.get("dist-tags") or {}
        return PackageInfo(
            name=str(payload.get("name") or package),
            description=payload.get("description") or None,
            repository=normalize_repository_url(payload.get("repository")),
            homepage=payload.get("homepage") or None,
            latest_version=dist_tags.get("latest"),
            license=str(license_value) if license_value else None,
        )

    def fetch_downloads(self, package: str, start: date, end: date) -> DownloadCount:
        validate_package_name(package)
        date_range = f"{start.isoformat()}:{end.isoformat()}"
        url = f"{self.downloads_url}/point/{date_range}/{quote(package, safe='')}"
        payload = self._get_json(package, url)

        if payload.get("error"):
            message = str(payload["error"])
            if "not found" in message.lower():
                raise PackageNotFound(package, message)
            raise ProviderUnavailable(package, message)

        raw_downloads = payload.get("downloads")
        try:
            downloads = None if raw_downloads is None else int(raw_downloads)
        except (TypeError, ValueError) as exc:
            raise ProviderUnavailable(
                package, f"unreadable download count {raw_downloads!r}"
            ) from exc
        logger.debug("downloads %s %s = %s", package, date_range, downloads)
        return DownloadCount(
            package=package,
            start=str(payload.get("start") or start.isoformat()),
            end=str(payload.get("end") or end.isoformat()),
            downloads=downloads,
        )
