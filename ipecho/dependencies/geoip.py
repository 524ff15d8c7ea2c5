from datetime import timedelta
from functools import lru_cache
import ipaddress
from typing import Annotated

from ipecho.config import settings
from ipecho.geoip import DatasetFetcher, GeoIPLookup, GeoIPManager, dataset_set_from_settings

from fastapi import Depends, Request


@lru_cache
def get_geoip_manager() -> GeoIPManager:
    """
    Get GeoIP manager instance with LRU cache to ensure singleton pattern
    """
    return GeoIPManager(
        dataset_set_from_settings(settings),
        fetcher=DatasetFetcher(timeout=settings.geoip_download_timeout),
        refresh_interval=timedelta(days=settings.geoip_refresh_interval_days),
        languages=settings.geoip_languages,
    )


def get_geoip_lookup(manager: Annotated[GeoIPManager, Depends(get_geoip_manager)]) -> GeoIPLookup:
    """
    Bind a lookup facade to the bundle that is current for this request
    """
    return manager.lookup()


def get_client_ip(request: Request) -> str:
    """
    Get the client's IP address
    Trusted headers are checked in the configured order, then the peer address
    """
    headers = request.headers
    for header in settings.trusted_ip_headers:
        value = headers.get(header)
        if not value:
            continue
        # X-Forwarded-For style headers may contain multiple IPs, take the first valid one
        for ip_str in value.split(","):
            ip = normalize_ip(ip_str.strip())
            if is_valid_ip(ip):
                return ip

    client_ip = request.client.host if request.client else "127.0.0.1"
    return normalize_ip(client_ip) if is_valid_ip(client_ip) else "127.0.0.1"


IPAddress = Annotated[str, Depends(get_client_ip)]
GeoIPService = Annotated[GeoIPManager, Depends(get_geoip_manager)]
GeoIPLookupService = Annotated[GeoIPLookup, Depends(get_geoip_lookup)]


def is_valid_ip(ip_str: str) -> bool:
    """
    Validate if the IP address is valid (supports IPv4 and IPv6)
    """
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def normalize_ip(ip_str: str) -> str:
    """
    Normalize IP address format
    Strips URL brackets; IPv6 is converted to compressed format
    """
    ip_str = ip_str.strip("[]")
    try:
        ip = ipaddress.ip_address(ip_str)
        if isinstance(ip, ipaddress.IPv6Address):
            return ip.compressed
        else:
            return str(ip)
    except ValueError:
        return ip_str
