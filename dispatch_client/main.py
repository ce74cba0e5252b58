"""
Driver console: FastAPI app exposing the dispatch core to the presentation layer.
"""
import logging
import os

# New Relic must be initialized BEFORE any other imports that it instruments.
if os.getenv("NEW_RELIC_LICENSE_KEY"):
    import newrelic.agent
    newrelic.agent.initialize("newrelic.ini")

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from dispatch_client.config import get_settings
from dispatch_client.redis_client import get_redis, close_redis
from dispatch_client.routers import driver
from dispatch_client.services.backend import HttpBackend
from dispatch_client.services.declines import RedisDeclineLedger
from dispatch_client.services.exceptions import (
    AlreadyTaken,
    DispatchError,
    LocationUnavailable,
    NetworkError,
    NoActivePresentation,
    NotOnline,
    PermissionDenied,
    RequestNotFound,
)
from dispatch_client.services.registry import DriverRegistry

settings = get_settings()
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

ERROR_STATUS = {
    PermissionDenied: status.HTTP_403_FORBIDDEN,
    RequestNotFound: status.HTTP_404_NOT_FOUND,
    AlreadyTaken: status.HTTP_409_CONFLICT,
    NotOnline: status.HTTP_409_CONFLICT,
    LocationUnavailable: status.HTTP_409_CONFLICT,
    NoActivePresentation: status.HTTP_409_CONFLICT,
    NetworkError: status.HTTP_502_BAD_GATEWAY,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s [%s]", settings.app_name, settings.env)
    backend = HttpBackend(settings)
    ledger = None
    if settings.decline_ledger_backend == "redis":
        ledger = RedisDeclineLedger(await get_redis(), settings.decline_dedup_seconds)
    app.state.registry = DriverRegistry(backend, settings=settings, ledger=ledger)
    yield
    await app.state.registry.teardown()
    await backend.aclose()
    await close_redis()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Driver availability and incoming request console",
    lifespan=lifespan,
)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_400_BAD_REQUEST,
    )
    logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc), "error": type(exc).__name__})


# Global error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s: %s", request.url, exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Health check (no auth)
@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok"}


app.include_router(driver.router)
