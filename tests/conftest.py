from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
import json
from pathlib import Path
from typing import Any

from ipecho.geoip import (
    DatasetDescriptor,
    DatasetFetcher,
    DatasetPurpose,
    GeoIPManager,
    build_dataset_set,
)

import httpx
import pytest

BASE_URL = "https://cdn.test/geoip"


class FakeReader:
    """Dict-backed stand-in for ``maxminddb.Reader``."""

    def __init__(self, records: dict[str, Any], path: Path | None = None):
        self.records = records
        self.path = path
        self.closed = False

    def get(self, ip_address: Any) -> Any:
        if self.closed:
            raise ValueError("Attempt to read from a closed MaxMind DB.")
        return self.records.get(str(ip_address))

    def close(self) -> None:
        self.closed = True


class FakeOpener:
    """Opens JSON files as ``FakeReader`` instances and remembers them."""

    def __init__(self) -> None:
        self.opened: list[FakeReader] = []

    def __call__(self, path: Path) -> FakeReader:
        reader = FakeReader(json.loads(path.read_text(encoding="utf-8")), path)
        self.opened.append(reader)
        return reader


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def dataset_body(purpose: DatasetPurpose, version: str) -> bytes:
    """A JSON dataset whose records carry ``version`` in every name."""
    records: dict[str, Any]
    if purpose is DatasetPurpose.COUNTRY:
        records = {
            "8.8.8.8": {"country": {"iso_code": "US", "names": {"en": f"United States {version}"}}},
            "2001:4860:4860::8888": {"country": {"iso_code": "US", "names": {"en": f"United States {version}"}}},
        }
    elif purpose is DatasetPurpose.CITY_IPV4:
        records = {
            "8.8.8.8": {
                "city": {"names": {"en": f"Mountain View {version}"}},
                "country": {"iso_code": "US"},
                "location": {"latitude": 37.4, "longitude": -122.1, "metro_code": 807},
            }
        }
    elif purpose is DatasetPurpose.CITY_IPV6:
        records = {
            "2001:4860:4860::8888": {
                "city": {"names": {"en": f"Mountain View v6 {version}"}},
                "country": {"iso_code": "US"},
            }
        }
    else:
        records = {
            "8.8.8.8": {"autonomous_system_number": 15169, "autonomous_system_organization": f"GOOGLE {version}"},
        }
    return json.dumps(records).encode("utf-8")


def write_dataset(descriptor: DatasetDescriptor, version: str) -> None:
    descriptor.path.parent.mkdir(parents=True, exist_ok=True)
    descriptor.path.write_bytes(dataset_body(descriptor.purpose, version))


@pytest.fixture
def datasets(tmp_path: Path) -> tuple[DatasetDescriptor, ...]:
    return build_dataset_set(
        tmp_path / "geoip",
        {purpose: f"{BASE_URL}/{purpose.value}.mmdb" for purpose in DatasetPurpose},
    )


class DatasetServer:
    """Serves dataset bodies through ``httpx.MockTransport`` and records requests."""

    def __init__(self, version: str = "v1"):
        self.version = version
        self.requested: list[str] = []
        self.failing: dict[DatasetPurpose, int] = {}
        self.corrupt: set[DatasetPurpose] = set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requested.append(str(request.url))
        name = request.url.path.rsplit("/", 1)[-1].removesuffix(".mmdb")
        purpose = DatasetPurpose(name)
        if purpose in self.failing:
            return httpx.Response(self.failing[purpose])
        if purpose in self.corrupt:
            return httpx.Response(200, content=b"{broken json")
        return httpx.Response(200, content=dataset_body(purpose, self.version))

    def fetcher(self) -> DatasetFetcher:
        return DatasetFetcher(timeout=5.0, transport=httpx.MockTransport(self.handler))


@pytest.fixture
def server() -> DatasetServer:
    return DatasetServer()


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2026, 10, 16, 10, 0, tzinfo=UTC))


@pytest.fixture
def make_manager(
    datasets: tuple[DatasetDescriptor, ...], server: DatasetServer, clock: Clock
) -> Callable[..., tuple[GeoIPManager, FakeOpener]]:
    def factory(**kwargs: Any) -> tuple[GeoIPManager, FakeOpener]:
        opener = FakeOpener()
        manager = GeoIPManager(
            datasets,
            fetcher=server.fetcher(),
            opener=opener,
            clock=clock,
            **kwargs,
        )
        return manager, opener

    return factory
