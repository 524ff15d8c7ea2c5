from contextlib import asynccontextmanager

from ipecho.config import settings
from ipecho.dependencies.geoip import get_geoip_manager
from ipecho.dependencies.scheduler import start_scheduler, stop_scheduler
from ipecho.log import system_logger
from ipecho.router import lookup_router
from ipecho.tasks import init_geoip, schedule_geoip_updates

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
import sentry_sdk


@asynccontextmanager
async def lifespan(app: FastAPI):
    # === on startup ===
    # init GeoIP, keep serving with empty lookups if it fails
    await init_geoip()

    # services
    schedule_geoip_updates()
    start_scheduler()

    if settings.trusted_ip_headers:
        system_logger("Server").info(f"Trusting remote IP from header(s): {', '.join(settings.trusted_ip_headers)}")

    yield

    # === on shutdown ===
    # let an in-progress refresh finish before the readers are closed
    await stop_scheduler()
    get_geoip_manager().close()


if settings.sentry_dsn is not None:
    sentry_sdk.init(
        dsn=str(settings.sentry_dsn),
        send_default_pii=False,
        environment="production" if not settings.debug else "development",
    )

app = FastAPI(
    title="ipecho-server",
    version="0.1.0",
    lifespan=lifespan,
    description="Returns the caller's IP address together with country, city and ASN data.",
)

app.include_router(lookup_router)


@app.exception_handler(exc_class_or_status_code=HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):  # noqa: ARG001
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=None,
        access_log=True,
    )
