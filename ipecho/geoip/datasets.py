"""The fixed set of GeoIP databases this service depends on."""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ipecho.config import Settings


class DatasetPurpose(StrEnum):
    CITY_IPV4 = "city-ipv4"
    CITY_IPV6 = "city-ipv6"
    COUNTRY = "country"
    ASN = "asn"


@dataclass(frozen=True, slots=True)
class DatasetDescriptor:
    name: str
    url: str
    path: Path
    purpose: DatasetPurpose


FILE_NAMES: dict[DatasetPurpose, str] = {
    DatasetPurpose.CITY_IPV4: "geolite2-city-ipv4.mmdb",
    DatasetPurpose.CITY_IPV6: "geolite2-city-ipv6.mmdb",
    DatasetPurpose.COUNTRY: "geo-whois-asn-country.mmdb",
    DatasetPurpose.ASN: "asn.mmdb",
}


def build_dataset_set(dest_dir: str | Path, urls: Mapping[DatasetPurpose, str]) -> tuple[DatasetDescriptor, ...]:
    """Build the descriptors for all four databases.

    Args:
        dest_dir: Directory holding one file per database.
        urls: Source URL for every purpose.

    Raises:
        ValueError: If a purpose has no URL.
    """
    directory = Path(dest_dir).expanduser()
    missing = [purpose.value for purpose in DatasetPurpose if not urls.get(purpose)]
    if missing:
        raise ValueError(f"Missing source URL for: {', '.join(missing)}")
    return tuple(
        DatasetDescriptor(
            name=FILE_NAMES[purpose].removesuffix(".mmdb"),
            url=urls[purpose],
            path=directory / FILE_NAMES[purpose],
            purpose=purpose,
        )
        for purpose in DatasetPurpose
    )


def dataset_set_from_settings(settings: "Settings") -> tuple[DatasetDescriptor, ...]:
    return build_dataset_set(
        settings.geoip_dest_dir,
        {
            DatasetPurpose.CITY_IPV4: settings.geoip_city_ipv4_url,
            DatasetPurpose.CITY_IPV6: settings.geoip_city_ipv6_url,
            DatasetPurpose.COUNTRY: settings.geoip_country_url,
            DatasetPurpose.ASN: settings.geoip_asn_url,
        },
    )
