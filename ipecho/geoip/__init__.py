"""GeoIP dataset management and lookups."""

from __future__ import annotations

from .bundle import LoadedDatasetBundle, Reader
from .datasets import DatasetDescriptor, DatasetPurpose, build_dataset_set, dataset_set_from_settings
from .errors import FetchFailure, LoadFailure
from .fetcher import DatasetFetcher
from .lookup import ASNResult, CityResult, CountryResult, GeoIPLookup, GeoIPLookupResult, parse_ip
from .manager import GeoIPManager, ManagerState, open_mmdb

__all__ = [
    "ASNResult",
    "CityResult",
    "CountryResult",
    "DatasetDescriptor",
    "DatasetFetcher",
    "DatasetPurpose",
    "FetchFailure",
    "GeoIPLookup",
    "GeoIPLookupResult",
    "GeoIPManager",
    "LoadFailure",
    "LoadedDatasetBundle",
    "ManagerState",
    "Reader",
    "build_dataset_set",
    "dataset_set_from_settings",
    "open_mmdb",
    "parse_ip",
]
