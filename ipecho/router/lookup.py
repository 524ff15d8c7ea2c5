"""Read-only lookup endpoints.

Every handler binds one lookup facade per request, so a concurrent refresh
never mixes data from two database generations within a response. Missing
data renders as empty fields, never as an error.
"""

from typing import Annotated

from ipecho.dependencies.geoip import GeoIPLookupService, GeoIPService, IPAddress
from ipecho.geoip import GeoIPLookupResult, parse_ip
from ipecho.helpers import utcnow

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse

router = APIRouter(tags=["Lookup"])

TargetIP = Annotated[str | None, Query(description="Address to look up, defaults to the client address")]


def _target(ip: str | None, client_ip: str) -> str:
    if ip is None:
        return client_ip
    address = parse_ip(ip)
    if address is None:
        raise HTTPException(status_code=422, detail=f"Invalid IP address: {ip}")
    return str(address)


@router.get("/", response_class=PlainTextResponse, include_in_schema=False)
@router.get("/ip", response_class=PlainTextResponse)
async def get_ip(client_ip: IPAddress):
    return f"{client_ip}\n"


@router.get("/country", response_class=PlainTextResponse)
def get_country(client_ip: IPAddress, lookup: GeoIPLookupService, ip: TargetIP = None):
    return f"{lookup.country(_target(ip, client_ip)).name}\n"


@router.get("/country-iso", response_class=PlainTextResponse)
def get_country_iso(client_ip: IPAddress, lookup: GeoIPLookupService, ip: TargetIP = None):
    return f"{lookup.country(_target(ip, client_ip)).iso}\n"


@router.get("/city", response_class=PlainTextResponse)
def get_city(client_ip: IPAddress, lookup: GeoIPLookupService, ip: TargetIP = None):
    return f"{lookup.city(_target(ip, client_ip)).name}\n"


@router.get("/asn", response_class=PlainTextResponse)
def get_asn(client_ip: IPAddress, lookup: GeoIPLookupService, ip: TargetIP = None):
    asn = lookup.asn(_target(ip, client_ip))
    return f"AS{asn.number}\n" if asn.number else "\n"


@router.get("/json", response_model=GeoIPLookupResult)
def get_json(client_ip: IPAddress, lookup: GeoIPLookupService, ip: TargetIP = None):
    return lookup.lookup_all(_target(ip, client_ip))


@router.get("/health", include_in_schema=False)
async def health_check(manager: GeoIPService):
    loaded_at = manager.loaded_at
    return {
        "status": "ok",
        "timestamp": utcnow().isoformat(),
        "geoip": manager.state.value,
        "loaded_at": loaded_at.isoformat() if loaded_at else None,
    }
