from __future__ import annotations

from datetime import date

import pytest
import requests

from npm_growth.errors import InvalidPackageName, PackageNotFound, ProviderUnavailable
from npm_growth.sources import npm_client
from npm_growth.sources.npm_client import NpmRegistryClient


class _Response:
    def __init__(self, status_code: int = 200, payload=None):
        self.status_code = status_code
        self._payload = payload

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _Session:
    def __init__(self, response=None, error: Exception | None = None):
        self.headers: dict[str, str] = {}
        self.response = response
        self.error = error
        self.urls: list[str] = []
        self.timeouts: list[object] = []
        self.closed = False

    def get(self, url, timeout=None):
        self.urls.append(url)
        self.timeouts.append(timeout)
        if self.error is not None:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


@pytest.mark.parametrize(
    "name",
    ["react", "@tanstack/react-query", "lodash.debounce", "solid-js", "a~b"],
)
def test_valid_package_names(name) -> None:
    assert npm_client.validate_package_name(name) == name


@pytest.mark.parametrize(
    "name",
    ["", "React", "has space", "@scope", "@/pkg", ".hidden", "a" * 215, "../etc"],
)
def test_invalid_package_names(name) -> None:
    assert not npm_client.is_valid_package_name(name)
    with pytest.raises(InvalidPackageName):
        npm_client.validate_package_name(name)


def test_fetch_downloads_builds_point_url_and_parses_count() -> None:
    session = _Session(
        _Response(
            payload={
                "downloads": 1234,
                "start": "2026-02-06",
                "end": "2026-02-12",
                "package": "@types/node",
            }
        )
    )
    client = NpmRegistryClient(timeout_seconds=7, session=session)

    count = client.fetch_downloads("@types/node", date(2026, 2, 6), date(2026, 2, 12))

    assert count.downloads == 1234
    assert count.end == "2026-02-12"
    assert session.urls == [
        f"{client.downloads_url}/point/2026-02-06:2026-02-12/%40types%2Fnode"
    ]
    assert session.timeouts == [7]
    assert session.headers["User-Agent"].startswith("npm-growth/")


def test_fetch_downloads_error_payloads() -> None:
    missing = NpmRegistryClient(
        session=_Session(_Response(payload={"error": "package nope not found"}))
    )
    with pytest.raises(PackageNotFound):
        missing.fetch_downloads("nope", date(2026, 2, 6), date(2026, 2, 12))

    broken = NpmRegistryClient(
        session=_Session(_Response(payload={"error": "end date > start date"}))
    )
    with pytest.raises(ProviderUnavailable):
        broken.fetch_downloads("react", date(2026, 2, 6), date(2026, 2, 12))


@pytest.mark.parametrize(
    "session, expected",
    [
        (_Session(_Response(status_code=404, payload={})), PackageNotFound),
        (_Session(_Response(status_code=503, payload={})), ProviderUnavailable),
        (_Session(_Response(payload=ValueError("bad json"))), ProviderUnavailable),
        (_Session(_Response(payload=["not", "a", "dict"])), ProviderUnavailable),
        (_Session(error=requests.Timeout("slow")), ProviderUnavailable),
        (_Session(error=requests.ConnectionError("down")), ProviderUnavailable),
    ],
)
def test_fetch_downloads_failures(session, expected) -> None:
    client = NpmRegistryClient(session=session)

    with pytest.raises(expected):
        client.fetch_downloads("react", date(2026, 2, 6), date(2026, 2, 12))


def test_invalid_name_never_reaches_the_network() -> None:
    session = _Session(_Response(payload={"downloads": 1}))
    client = NpmRegistryClient(session=session)

    with pytest.raises(InvalidPackageName):
        client.fetch_downloads("Bad Name", date(2026, 2, 6), date(2026, 2, 12))
    assert session.urls == []


def test_fetch_package_info_normalizes_metadata() -> None:
    session = _Session(
        _Response(
            payload={
                "name": "@hono/node-server",
                "description": "Node.js adapter",
                "repository": {"type": "git", "url": "git+https://github.com/honojs/node-server.git"},
                "homepage": "https://hono.dev",
                "license": {"type": "MIT"},
                "dist-tags": {"latest": "1.13.0"},
            }
        )
    )

    with NpmRegistryClient(session=session) as client:
        info = client.fetch_package_info("@hono/node-server")

    assert info.repository == "https://github.com/honojs/node-server"
    assert info.license == "MIT"
    assert info.latest_version == "1.13.0"
    assert session.urls[0].endswith("/@hono%2Fnode-server")
    assert session.closed


@pytest.mark.parametrize("raw", ["n/a", "1.5", {"count": 3}, [10]])
def test_unreadable_download_count_is_unavailable(raw) -> None:
    client = NpmRegistryClient(session=_Session(_Response(payload={"downloads": raw})))

    with pytest.raises(ProviderUnavailable, match="unreadable download count"):
        client.fetch_downloads("react", date(2026, 2, 6), date(2026, 2, 12))
