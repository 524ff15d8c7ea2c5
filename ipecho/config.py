from typing import Annotated
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CDN_BASE = "https://cdn.jsdelivr.net/npm/@ip-location-db"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    # server
    host: Annotated[str, Field(default="0.0.0.0"), "server"]  # noqa: S104
    port: Annotated[int, Field(default=8080), "server"]
    debug: Annotated[bool, Field(default=False), "server"]
    trusted_ip_headers: Annotated[list[str], Field(default=[]), "server"]

    # logging
    log_level: Annotated[str, Field(default="INFO"), "logging"]

    # monitoring
    sentry_dsn: Annotated[HttpUrl | None, Field(default=None), "monitoring"]

    # geoip
    geoip_dest_dir: Annotated[str, Field(default="./data/geoip"), "geoip"]
    geoip_city_ipv4_url: Annotated[
        str, Field(default=f"{CDN_BASE}/geolite2-city-mmdb/geolite2-city-ipv4.mmdb"), "geoip"
    ]
    geoip_city_ipv6_url: Annotated[
        str, Field(default=f"{CDN_BASE}/geolite2-city-mmdb/geolite2-city-ipv6.mmdb"), "geoip"
    ]
    geoip_country_url: Annotated[
        str, Field(default=f"{CDN_BASE}/geo-whois-asn-country-mmdb/geo-whois-asn-country.mmdb"), "geoip"
    ]
    geoip_asn_url: Annotated[str, Field(default=f"{CDN_BASE}/asn-mmdb/asn.mmdb"), "geoip"]
    geoip_refresh_interval_days: Annotated[int, Field(default=7, gt=0), "geoip"]
    geoip_update_day: Annotated[int, Field(default=6), "geoip"]  # Sunday
    geoip_update_hour: Annotated[int, Field(default=3), "geoip"]
    geoip_download_timeout: Annotated[float, Field(default=60.0, gt=0), "geoip"]
    geoip_languages: Annotated[list[str], Field(default=["en"]), "geoip"]

    # scheduler
    scheduler_tick_seconds: Annotated[float, Field(default=60.0, gt=0), "scheduler"]
    scheduler_timezone: Annotated[str, Field(default="UTC"), "scheduler"]

    @field_validator("geoip_update_day")
    @classmethod
    def validate_update_day(cls, v: int) -> int:
        if not 0 <= v <= 6:
            raise ValueError("geoip_update_day must be between 0 (Monday) and 6 (Sunday)")
        return v

    @field_validator("geoip_update_hour")
    @classmethod
    def validate_update_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("geoip_update_hour must be between 0 and 23")
        return v

    @field_validator("scheduler_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def scheduler_tz(self) -> ZoneInfo:
        return ZoneInfo(self.scheduler_timezone)


settings = Settings()  # pyright: ignore[reportCallIssue]
