"""Read-only lookup facade over a loaded dataset bundle.

Every query resolves to a zero-value result when data is unavailable: no
bundle, no reader for the purpose, no record for the address, an invalid
address, or a reader error. Callers never need to handle exceptions.

Records are read in the GeoIP2 layout (``country.names``,
``registered_country``, ``location.metro_code`` ...). The flat layout of the
ip-location-db builds (``country_code``, ``city``, ``state1`` ...) is also
understood, since those are the default download sources.
"""

from collections.abc import Mapping, Sequence
import ipaddress
from typing import Any, TypeAlias

from ipecho.log import log

from .bundle import LoadedDatasetBundle, Reader
from .datasets import DatasetPurpose

from pydantic import BaseModel

logger = log("GeoIP")

IPAddressLike: TypeAlias = str | ipaddress.IPv4Address | ipaddress.IPv6Address


class CountryResult(BaseModel):
    name: str = ""
    iso: str = ""
    is_eu: bool | None = None


class CityResult(BaseModel):
    name: str = ""
    region_name: str = ""
    region_code: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    metro_code: int = 0
    postal_code: str = ""
    time_zone: str = ""


class ASNResult(BaseModel):
    number: int = 0
    organization: str = ""


class GeoIPLookupResult(BaseModel):
    ip: str
    country: CountryResult
    city: CityResult
    asn: ASNResult


def _as_mapping(value: Any) -> dict[str, Any]:
    """Convert a value to a dict, returning empty dict if not a dict."""
    return value if isinstance(value, dict) else {}


def _as_str(value: Any, default: str = "") -> str:
    """Convert a value to string with a default fallback."""
    if isinstance(value, str):
        return value
    if value is None:
        return default
    return str(value)


def _as_int(value: Any) -> int:
    """Convert a value to int, returning 0 if not an int."""
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


def _as_float(value: Any) -> float:
    if isinstance(value, int | float) and not isinstance(value, bool):
        return float(value)
    return 0.0


def parse_ip(ip: IPAddressLike) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    """Parse an address, unwrapping IPv4-mapped IPv6 addresses.

    Returns:
        The address, or None if ``ip`` is not a valid address.
    """
    if isinstance(ip, str):
        try:
            ip = ipaddress.ip_address(ip.strip().strip("[]"))
        except ValueError:
            return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


class GeoIPLookup:
    """Country, city and ASN queries bound to a single bundle.

    Args:
        bundle: The bundle to read from, or None for an empty facade.
        languages: Preferred name languages, most preferred first.
    """

    def __init__(self, bundle: LoadedDatasetBundle | None, languages: Sequence[str] = ("en",)):
        self.bundle = bundle
        self.languages = tuple(languages) or ("en",)

    @property
    def is_empty(self) -> bool:
        if self.bundle is None:
            return True
        return all(
            self.bundle.reader(purpose) is None
            for purpose in (DatasetPurpose.CITY_IPV4, DatasetPurpose.CITY_IPV6, DatasetPurpose.COUNTRY)
        )

    def _pick_name(self, names: Any) -> str:
        names = _as_mapping(names)
        for language in self.languages:
            name = names.get(language)
            if isinstance(name, str) and name:
                return name
        return ""

    def _record(self, reader: Reader | None, ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> dict[str, Any]:
        if reader is None:
            return {}
        try:
            return _as_mapping(reader.get(ip))
        except Exception as e:
            logger.debug(f"Lookup of {ip} failed: {e}")
            return {}

    def _reader(self, purpose: DatasetPurpose) -> Reader | None:
        return self.bundle.reader(purpose) if self.bundle is not None else None

    def country(self, ip: IPAddressLike) -> CountryResult:
        result = CountryResult()
        address = parse_ip(ip)
        if address is None:
            return result
        data = self._record(self._reader(DatasetPurpose.COUNTRY), address)
        if not data:
            return result

        country = _as_mapping(data.get("country"))
        registered = _as_mapping(data.get("registered_country"))
        result.name = self._pick_name(country.get("names")) or self._pick_name(registered.get("names"))
        result.iso = (
            _as_str(country.get("iso_code")) or _as_str(registered.get("iso_code")) or _as_str(data.get("country_code"))
        )
        if country or registered:
            result.is_eu = bool(country.get("is_in_european_union") or registered.get("is_in_european_union"))
        return result

    def city(self, ip: IPAddressLike) -> CityResult:
        result = CityResult()
        address = parse_ip(ip)
        if address is None:
            return result
        purpose = DatasetPurpose.CITY_IPV4 if address.version == 4 else DatasetPurpose.CITY_IPV6
        data = self._record(self._reader(purpose), address)
        if not data:
            return result

        if isinstance(data.get("city"), str):
            return self._flat_city(data)

        result.name = self._pick_name(_as_mapping(data.get("city")).get("names"))
        subdivisions = data.get("subdivisions")
        if isinstance(subdivisions, list) and subdivisions:
            subdivision = _as_mapping(subdivisions[0])
            result.region_name = self._pick_name(subdivision.get("names"))
            result.region_code = _as_str(subdivision.get("iso_code"))

        location = _as_mapping(data.get("location"))
        result.latitude = _as_float(location.get("latitude"))
        result.longitude = _as_float(location.get("longitude"))
        result.time_zone = _as_str(location.get("time_zone"))
        result.postal_code = _as_str(_as_mapping(data.get("postal")).get("code"))

        # metro codes are only meaningful inside the US
        country_iso = _as_str(_as_mapping(data.get("country")).get("iso_code"))
        metro_code = _as_int(location.get("metro_code"))
        if metro_code > 0 and country_iso == "US":
            result.metro_code = metro_code
        return result

    @staticmethod
    def _flat_city(data: Mapping[str, Any]) -> CityResult:
        return CityResult(
            name=_as_str(data.get("city")),
            region_name=_as_str(data.get("state1")),
            latitude=_as_float(data.get("latitude")),
            longitude=_as_float(data.get("longitude")),
            postal_code=_as_str(data.get("postcode")),
            time_zone=_as_str(data.get("timezone")),
        )

    def asn(self, ip: IPAddressLike) -> ASNResult:
        result = ASNResult()
        address = parse_ip(ip)
        if address is None:
            return result
        data = self._record(self._reader(DatasetPurpose.ASN), address)
        if not data:
            return result
        result.number = max(_as_int(data.get("autonomous_system_number")), 0)
        result.organization = _as_str(data.get("autonomous_system_organization"))
        return result

    def lookup_all(self, ip: IPAddressLike) -> GeoIPLookupResult:
        """Run all three queries against the same bundle."""
        address = parse_ip(ip)
        return GeoIPLookupResult(
            ip=str(address) if address is not None else str(ip),
            country=self.country(ip),
            city=self.city(ip),
            asn=self.asn(ip),
        )
