"""Application tasks module.

This module provides startup tasks and scheduled background jobs.
"""

from .geoip import init_geoip, schedule_geoip_updates, update_geoip_database

__all__ = [
    "init_geoip",
    "schedule_geoip_updates",
    "update_geoip_database",
]
