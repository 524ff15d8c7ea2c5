"""GeoIP dataset lifecycle manager.

Owns the four GeoIP databases: fetches missing files at startup, opens them
into a ``LoadedDatasetBundle``, refreshes them on schedule and publishes each
new bundle with a single reference swap. Readers are handed out through
``lookup()``, which binds a ``GeoIPLookup`` to whatever bundle is current at
the time of the call.

States:
    uninitialized -> initialize() -> ready | degraded
    ready/degraded -> refresh() -> refreshing -> ready (success) or previous state (failure)

A failed refresh never replaces or closes the current bundle, and leaves the
files on disk as they were.
"""

import asyncio
from collections.abc import Callable, Mapping, Sequence
from contextlib import suppress
from dataclasses import replace
from datetime import datetime, timedelta
from enum import StrEnum
import os
from pathlib import Path
from typing import TypeAlias

from ipecho.helpers import ensure_aware, utcnow
from ipecho.log import system_logger

from .bundle import LoadedDatasetBundle, Reader
from .datasets import DatasetDescriptor, DatasetPurpose
from .errors import FetchFailure, LoadFailure
from .fetcher import DatasetFetcher
from .lookup import GeoIPLookup

import maxminddb

logger = system_logger("GeoIP")

ReaderOpener: TypeAlias = Callable[[Path], Reader]


class ManagerState(StrEnum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    DEGRADED = "degraded"
    REFRESHING = "refreshing"


def open_mmdb(path: Path) -> Reader:
    """Open a MaxMind DB file, memory-mapped where the C extension allows it."""
    return maxminddb.open_database(str(path), maxminddb.MODE_AUTO)


def staging_path(path: Path) -> Path:
    """Where a refresh downloads the next version of ``path`` before committing it."""
    return path.with_name(f".{path.name}.staged")


class GeoIPManager:
    """Manages fetching, loading and hot-swapping of the GeoIP dataset set.

    Attributes:
        datasets: The dataset descriptors, one per purpose.
        fetcher: Downloader used for missing and refreshed files.
        refresh_interval: Age after which ``should_refresh`` turns true.
        languages: Preferred name languages for lookups.
    """

    def __init__(
        self,
        datasets: Sequence[DatasetDescriptor],
        *,
        fetcher: DatasetFetcher | None = None,
        opener: ReaderOpener | None = None,
        refresh_interval: timedelta = timedelta(days=7),
        languages: Sequence[str] = ("en",),
        clock: Callable[[], datetime] = utcnow,
    ):
        purposes = {descriptor.purpose for descriptor in datasets}
        if purposes != set(DatasetPurpose) or len(datasets) != len(DatasetPurpose):
            raise ValueError("Exactly one dataset per purpose is required")
        self.datasets = tuple(datasets)
        self.fetcher = fetcher or DatasetFetcher()
        self.refresh_interval = refresh_interval
        self.languages = tuple(languages)
        self._opener = opener or open_mmdb
        self._clock = clock
        self._bundle: LoadedDatasetBundle | None = None
        self._state = ManagerState.UNINITIALIZED
        self._refresh_lock = asyncio.Lock()

    @property
    def state(self) -> ManagerState:
        return self._state

    @property
    def bundle(self) -> LoadedDatasetBundle | None:
        return self._bundle

    @property
    def loaded_at(self) -> datetime | None:
        bundle = self._bundle
        return bundle.loaded_at if bundle is not None else None

    @property
    def is_ready(self) -> bool:
        return self._bundle is not None

    def _missing(self) -> list[DatasetDescriptor]:
        return [descriptor for descriptor in self.datasets if not descriptor.path.is_file()]

    def _staging_paths(self) -> dict[DatasetPurpose, Path]:
        return {descriptor.purpose: staging_path(descriptor.path) for descriptor in self.datasets}

    def _staged_descriptors(self, staged: Mapping[DatasetPurpose, Path]) -> list[DatasetDescriptor]:
        return [replace(descriptor, path=staged[descriptor.purpose]) for descriptor in self.datasets]

    def _open_all(self, sources: Mapping[DatasetPurpose, Path] | None = None) -> LoadedDatasetBundle:
        """Open every dataset, from ``sources`` when given. On failure, already opened readers are closed."""
        readers: dict[DatasetPurpose, Reader] = {}
        try:
            for descriptor in self.datasets:
                path = sources[descriptor.purpose] if sources else descriptor.path
                try:
                    readers[descriptor.purpose] = self._opener(path)
                except (OSError, ValueError, maxminddb.InvalidDatabaseError) as e:
                    raise LoadFailure(path, descriptor.purpose.value, str(e)) from e
        except LoadFailure:
            for reader in readers.values():
                with suppress(Exception):
                    reader.close()
            raise
        return LoadedDatasetBundle(
            readers=readers,
            loaded_at=ensure_aware(self._clock()),
            paths={descriptor.purpose: descriptor.path for descriptor in self.datasets},
        )

    async def _load(self, sources: Mapping[DatasetPurpose, Path] | None = None) -> LoadedDatasetBundle:
        return await asyncio.to_thread(self._open_all, sources)

    def _commit(self, staged: Mapping[DatasetPurpose, Path]) -> None:
        for descriptor in self.datasets:
            os.replace(staged[descriptor.purpose], descriptor.path)

    @staticmethod
    def _discard(staged: Mapping[DatasetPurpose, Path]) -> None:
        for path in staged.values():
            with suppress(FileNotFoundError):
                path.unlink()

    def _publish(self, bundle: LoadedDatasetBundle) -> None:
        # single reference assignment; readers never see a partial bundle
        self._bundle = bundle
        self._state = ManagerState.READY

    async def initialize(self) -> None:
        """Fetch missing datasets, load all of them and publish the bundle.

        Files already on disk are used as-is. Staged downloads left behind by
        an interrupted refresh are removed.

        Raises:
            FetchFailure: If a missing dataset could not be downloaded.
            LoadFailure: If a dataset could not be opened.
        """
        try:
            await asyncio.to_thread(self._discard, self._staging_paths())
            missing = await asyncio.to_thread(self._missing)
            if missing:
                logger.info(f"{len(missing)} GeoIP database(s) not found, downloading...")
                await self.fetcher.fetch_many(missing)
            else:
                logger.info("All GeoIP databases present, skipping download")
            bundle = await self._load()
        except Exception as e:
            self._state = ManagerState.DEGRADED
            logger.error(f"GeoIP initialization failed, lookups will return empty results: {e}")
            raise

        self._publish(bundle)
        logger.success(f"GeoIP databases loaded ({len(self.datasets)} files)")

    def should_refresh(self, now: datetime | None = None) -> bool:
        """Whether the current bundle is older than the refresh interval."""
        bundle = self._bundle
        if bundle is None:
            return True
        now = ensure_aware(now) if now is not None else ensure_aware(self._clock())
        return now - bundle.loaded_at > self.refresh_interval

    def _abandon(self, bundle: LoadedDatasetBundle | None, state: ManagerState) -> None:
        if bundle is not None:
            bundle.close()
        self._state = state

    async def refresh(self) -> bool:
        """Re-download every dataset and swap in a freshly loaded bundle.

        Downloads go to staging files next to the live ones. They replace the
        live files only after every one of them has been opened, so the files
        on disk always form the last set that loaded successfully.

        Returns:
            True if a new bundle was published. On failure the previous bundle
            stays current and False is returned.
        """
        async with self._refresh_lock:
            previous_state = self._state
            self._state = ManagerState.REFRESHING
            logger.info("Refreshing GeoIP databases...")
            staged = self._staging_paths()
            bundle: LoadedDatasetBundle | None = None
            try:
                await self.fetcher.fetch_many(self._staged_descriptors(staged))
                bundle = await self._load(staged)
                await asyncio.to_thread(self._commit, staged)
            except (FetchFailure, LoadFailure, OSError) as e:
                self._abandon(bundle, previous_state)
                logger.error(f"GeoIP refresh failed, keeping current databases: {e}")
                return False
            except asyncio.CancelledError:
                self._abandon(bundle, previous_state)
                raise
            except Exception:
                self._abandon(bundle, previous_state)
                logger.exception("Unexpected error during GeoIP refresh, keeping current databases")
                return False
            finally:
                self._discard(staged)

            # the replaced bundle is released once in-flight lookups drop it
            self._publish(bundle)
            logger.success(f"GeoIP databases refreshed at {bundle.loaded_at.isoformat()}")
            return True

    def lookup(self) -> GeoIPLookup:
        """Return a lookup facade bound to the current bundle."""
        return GeoIPLookup(self._bundle, self.languages)

    def close(self) -> None:
        """Close the current bundle. Intended for process shutdown."""
        bundle, self._bundle = self._bundle, None
        if bundle is not None:
            bundle.close()
        self._state = ManagerState.UNINITIALIZED
