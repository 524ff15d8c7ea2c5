"""GeoIP database initialization and scheduled refresh.

The databases are used to enrich responses with geolocation data. Failures
never block application startup: lookups simply return empty results until a
later refresh succeeds.
"""

from ipecho.config import settings
from ipecho.dependencies.geoip import get_geoip_manager
from ipecho.dependencies.scheduler import get_scheduler
from ipecho.log import task_logger
from ipecho.scheduler import ScheduledTask, WeeklyRule

logger = task_logger("GeoIP")

GEOIP_TASK_NAME = "geoip_weekly_update"


async def update_geoip_database() -> bool:
    """Refresh the GeoIP databases on a weekly schedule.

    Returns:
        Whether a new set of databases was published.
    """
    try:
        logger.info("Starting scheduled GeoIP database update...")
        refreshed = await get_geoip_manager().refresh()
        if refreshed:
            logger.info("Scheduled GeoIP database update completed successfully")
        return refreshed
    except Exception as exc:
        logger.error(f"Scheduled GeoIP database update failed: {exc}")
        return False


async def init_geoip() -> None:
    """Initialize the GeoIP databases during application startup.

    Downloads any database that is not present yet, then loads all of them.
    Failures are logged but do not block application startup.
    """
    try:
        logger.info("Initializing GeoIP database...")
        await get_geoip_manager().initialize()
        logger.info("GeoIP database initialization completed")
    except Exception as exc:
        logger.error(f"GeoIP database initialization failed: {exc}")
        # Do not raise an exception to avoid blocking application startup


def schedule_geoip_updates() -> ScheduledTask | None:
    """Register the weekly refresh with the scheduler."""
    rule = WeeklyRule(
        weekday=settings.geoip_update_day,
        hour=settings.geoip_update_hour,
        tz=settings.scheduler_tz,
    )
    return get_scheduler().add_task(GEOIP_TASK_NAME, rule, update_geoip_database)
