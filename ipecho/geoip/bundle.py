"""An immutable set of opened GeoIP readers."""

from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, Protocol

from .datasets import DatasetPurpose


class Reader(Protocol):
    """The subset of ``maxminddb.Reader`` used by the lookup facade."""

    def get(self, ip_address: Any) -> Any: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class LoadedDatasetBundle:
    """Readers for every dataset purpose, opened together.

    A bundle is never modified after construction. A refresh builds a new
    bundle and the manager swaps its reference; lookups that still hold the
    old bundle keep using it until they return.
    """

    readers: Mapping[DatasetPurpose, Reader]
    loaded_at: datetime
    paths: Mapping[DatasetPurpose, Path] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "readers", MappingProxyType(dict(self.readers)))
        object.__setattr__(self, "paths", MappingProxyType(dict(self.paths)))

    def reader(self, purpose: DatasetPurpose) -> Reader | None:
        return self.readers.get(purpose)

    def close(self) -> None:
        """Close all readers."""
        for reader in self.readers.values():
            with suppress(Exception):
                reader.close()
