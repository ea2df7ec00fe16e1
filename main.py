import functools
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from apps.drops.reconciler import Reconciler
from apps.drops.routers import router as drops_router
from apps.drops.services import build_service
from apps.drops.tasks import PeriodicTask, evict_expired
from config.db import close_db, init_db
from config.logging_config import setup_logging
from config.middleware import CORS_HEADERS, CorsMiddleware, RequestLoggingMiddleware
from config.settings import EVICTION_INTERVAL_SECS, RECONCILE_INTERVAL_SECS, SCHEDULER_ENABLED, SERVICE_NAME, \
    STORAGE_BACKEND

logger = logging.getLogger("drops.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await init_db()
    service = build_service()
    app.state.drops = service

    tasks = []
    if SCHEDULER_ENABLED:
        reconciler = Reconciler(service.blobs)
        tasks = [
            PeriodicTask("reconciler", RECONCILE_INTERVAL_SECS, reconciler.sweep),
            PeriodicTask("ttl-evictor", EVICTION_INTERVAL_SECS,
                         functools.partial(evict_expired, service.blobs.metadata, service.limiter.store)),
        ]
        for task in tasks:
            task.start()
    logger.info("%s started (storage=%s, scheduler=%s)", SERVICE_NAME, STORAGE_BACKEND, SCHEDULER_ENABLED)
    try:
        yield
    finally:
        for task in tasks:
            await task.stop()
        await close_db()


app = FastAPI(title=SERVICE_NAME, version="0.1.0", lifespan=lifespan)

app.add_middleware(CorsMiddleware)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": code, "message": str(exc.detail)},
        headers={**(exc.headers or {}), **CORS_HEADERS},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log the full traceback of anything unhandled and return a bare 500."""
    logger.error(
        "Unhandled exception %s %s: %s\n%s",
        request.method,
        request.url.path,
        exc,
        traceback.format_exc(),
    )
    return JSONResponse(
        status_code=500,
        content={"error": "INTERNAL_ERROR", "message": "Internal server error"},
        headers=CORS_HEADERS,
    )


app.include_router(drops_router)
