import asyncio
from dataclasses import replace
from datetime import timedelta

from ipecho.geoip import DatasetPurpose, FetchFailure, GeoIPManager, LoadFailure, ManagerState
from ipecho.geoip.manager import staging_path

from conftest import FakeOpener, write_dataset
import pytest


def _country(manager) -> str:
    return manager.lookup().country("8.8.8.8").name


def test_initialize_with_all_files_present_does_not_fetch(make_manager, datasets, server) -> None:
    for descriptor in datasets:
        write_dataset(descriptor, "disk")
    manager, opener = make_manager()

    asyncio.run(manager.initialize())

    assert server.requested == []
    assert manager.state is ManagerState.READY
    assert len(opener.opened) == 4
    assert _country(manager) == "United States disk"


def test_initialize_fetches_only_missing_file(make_manager, datasets, server) -> None:
    for descriptor in datasets:
        if descriptor.purpose is not DatasetPurpose.ASN:
            write_dataset(descriptor, "disk")
    manager, opener = make_manager()

    asyncio.run(manager.initialize())

    assert server.requested == ["https://cdn.test/geoip/asn.mmdb"]
    assert len(opener.opened) == 4
    lookup = manager.lookup()
    assert lookup.asn("8.8.8.8").organization == "GOOGLE v1"
    assert lookup.country("8.8.8.8").name == "United States disk"


def test_initialize_downloads_everything_on_first_run(make_manager, datasets, server) -> None:
    manager, _ = make_manager()

    asyncio.run(manager.initialize())

    assert len(server.requested) == 4
    assert all(descriptor.path.is_file() for descriptor in datasets)
    assert manager.is_ready


def test_initialize_fetch_failure_degrades(make_manager, server) -> None:
    server.failing[DatasetPurpose.CITY_IPV6] = 500
    manager, _ = make_manager()

    with pytest.raises(FetchFailure):
        asyncio.run(manager.initialize())

    assert manager.state is ManagerState.DEGRADED
    assert manager.bundle is None
    lookup = manager.lookup()
    assert lookup.is_empty
    assert lookup.country("8.8.8.8").name == ""
    assert lookup.asn("8.8.8.8").number == 0


def test_initialize_malformed_file_degrades_and_closes_opened_readers(make_manager, datasets) -> None:
    for descriptor in datasets:
        write_dataset(descriptor, "disk")
    asn = next(d for d in datasets if d.purpose is DatasetPurpose.ASN)
    asn.path.write_bytes(b"\x00not a database")
    manager, opener = make_manager()

    with pytest.raises(LoadFailure) as exc_info:
        asyncio.run(manager.initialize())

    assert exc_info.value.purpose == "asn"
    assert manager.state is ManagerState.DEGRADED
    assert opener.opened and all(reader.closed for reader in opener.opened)


def test_refresh_replaces_bundle_and_keeps_earlier_handles_consistent(make_manager, datasets, server, clock) -> None:
    for descriptor in datasets:
        write_dataset(descriptor, "v1")
    manager, opener = make_manager()
    asyncio.run(manager.initialize())
    old_bundle = manager.bundle
    old_lookup = manager.lookup()

    server.version = "v2"
    clock.now += timedelta(days=8)
    assert asyncio.run(manager.refresh()) is True

    assert len(server.requested) == 4
    assert manager.bundle is not old_bundle
    assert manager.loaded_at == clock.now
    assert _country(manager) == "United States v2"
    # a handle taken before the swap still reads the old generation
    assert old_lookup.country("8.8.8.8").name == "United States v1"
    assert old_lookup.asn("8.8.8.8").organization == "GOOGLE v1"
    assert not any(reader.closed for reader in opener.opened)


def test_failed_refresh_keeps_previous_data(make_manager, datasets, server) -> None:
    for descriptor in datasets:
        write_dataset(descriptor, "v1")
    manager, _ = make_manager()
    asyncio.run(manager.initialize())
    bundle = manager.bundle

    server.version = "v2"
    server.failing[DatasetPurpose.ASN] = 502
    assert asyncio.run(manager.refresh()) is False

    assert manager.bundle is bundle
    assert manager.state is ManagerState.READY
    lookup = manager.lookup()
    assert lookup.country("8.8.8.8").name == "United States v1"
    assert lookup.asn("8.8.8.8").organization == "GOOGLE v1"


def test_failed_load_during_refresh_keeps_previous_data(make_manager, datasets, server) -> None:
    for descriptor in datasets:
        write_dataset(descriptor, "v1")
    manager, _ = make_manager()
    asyncio.run(manager.initialize())
    bundle = manager.bundle

    server.corrupt.add(DatasetPurpose.CITY_IPV6)
    assert asyncio.run(manager.refresh()) is False
    assert manager.bundle is bundle
    assert _country(manager) == "United States v1"


def test_failed_refresh_leaves_files_on_disk_loadable(make_manager, datasets, server) -> None:
    for descriptor in datasets:
        write_dataset(descriptor, "v1")
    manager, _ = make_manager()
    asyncio.run(manager.initialize())

    server.version = "v2"
    server.corrupt.add(DatasetPurpose.CITY_IPV6)
    assert asyncio.run(manager.refresh()) is False

    # a restart picks up the last set that loaded, not the broken download
    restarted, _ = make_manager()
    asyncio.run(restarted.initialize())
    assert restarted.state is ManagerState.READY
    assert _country(restarted) == "United States v1"
    assert server.requested.count("https://cdn.test/geoip/city-ipv6.mmdb") == 1
    assert sorted(p.name for p in datasets[0].path.parent.iterdir()) == sorted(d.path.name for d in datasets)


def test_successful_refresh_replaces_files_on_disk(make_manager, datasets, server) -> None:
    for descriptor in datasets:
        write_dataset(descriptor, "v1")
    manager, _ = make_manager()
    asyncio.run(manager.initialize())

    server.version = "v2"
    assert asyncio.run(manager.refresh()) is True

    assert all(b"v2" in descriptor.path.read_bytes() for descriptor in datasets)
    assert sorted(p.name for p in datasets[0].path.parent.iterdir()) == sorted(d.path.name for d in datasets)
    assert manager.bundle.paths[DatasetPurpose.ASN] == next(d.path for d in datasets if d.purpose is DatasetPurpose.ASN)


def test_initialize_removes_leftover_staged_downloads(make_manager, datasets, server) -> None:
    for descriptor in datasets:
        write_dataset(descriptor, "disk")
    leftover = staging_path(datasets[0].path)
    leftover.write_bytes(b"half a download")
    manager, _ = make_manager()

    asyncio.run(manager.initialize())

    assert not leftover.exists()
    assert server.requested == []


def test_initialize_with_invalid_url_degrades(datasets, server) -> None:
    broken = [
        replace(d, url="https://cdn.test:notaport/asn.mmdb") if d.purpose is DatasetPurpose.ASN else d for d in datasets
    ]
    manager = GeoIPManager(broken, fetcher=server.fetcher(), opener=FakeOpener())

    with pytest.raises(FetchFailure):
        asyncio.run(manager.initialize())

    assert manager.state is ManagerState.DEGRADED


def test_refresh_recovers_degraded_manager(make_manager, server) -> None:
    server.failing[DatasetPurpose.COUNTRY] = 500
    manager, _ = make_manager()
    with pytest.raises(FetchFailure):
        asyncio.run(manager.initialize())

    server.failing.clear()
    assert asyncio.run(manager.refresh()) is True
    assert manager.state is ManagerState.READY
    assert _country(manager) == "United States v1"


def test_should_refresh_uses_refresh_interval(make_manager, datasets, clock) -> None:
    for descriptor in datasets:
        write_dataset(descriptor, "v1")
    manager, _ = make_manager(refresh_interval=timedelta(days=7))
    assert manager.should_refresh() is True

    asyncio.run(manager.initialize())
    loaded_at = clock.now
    assert manager.should_refresh(loaded_at + timedelta(days=7)) is False
    assert manager.should_refresh(loaded_at + timedelta(days=7, seconds=1)) is True
    # pure: asking twice does not change anything
    assert manager.should_refresh(loaded_at + timedelta(days=7, seconds=1)) is True
    assert manager.loaded_at == loaded_at


def test_lookups_never_mix_generations_during_refresh(make_manager, datasets, server) -> None:
    for descriptor in datasets:
        write_dataset(descriptor, "v1")
    manager, _ = make_manager()

    async def scenario() -> set[str]:
        await manager.initialize()
        server.version = "v2"
        refresh = asyncio.create_task(manager.refresh())
        seen: set[str] = set()
        while not refresh.done():
            result = manager.lookup().lookup_all("8.8.8.8")
            country_version = result.country.name.rsplit(" ", 1)[-1]
            city_version = result.city.name.rsplit(" ", 1)[-1]
            asn_version = result.asn.organization.rsplit(" ", 1)[-1]
            assert country_version == city_version == asn_version
            seen.add(country_version)
            await asyncio.sleep(0)
        assert await refresh is True
        return seen

    seen = asyncio.run(scenario())
    assert "v1" in seen
    assert _country(manager) == "United States v2"


def test_close_releases_readers(make_manager, datasets) -> None:
    for descriptor in datasets:
        write_dataset(descriptor, "v1")
    manager, opener = make_manager()
    asyncio.run(manager.initialize())

    manager.close()

    assert manager.bundle is None
    assert manager.state is ManagerState.UNINITIALIZED
    assert all(reader.closed for reader in opener.opened)
    assert manager.lookup().country("8.8.8.8").name == ""


def test_manager_requires_full_dataset_set(datasets) -> None:
    with pytest.raises(ValueError):
        GeoIPManager(datasets[:3])
