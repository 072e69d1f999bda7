# main.py
from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gridmon import errors
from gridmon.api import (
    routes_elements,
    routes_events,
    routes_health,
    routes_measurements,
    routes_topology,
)
from gridmon.deps import get_engine, get_settings
from gridmon.logging_config import configure_logging

logger = logging.getLogger("gridmon.http")

RETRY_AFTER_S = 1


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_dir)
    get_engine()
    logger.info("gridmon backend started")
    yield


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="GridMon Backend",
        version="0.1.0",
        description="Grid topology model and threshold alarm pipeline for the grid monitoring dashboard.",
        lifespan=lifespan,
    )

    # ============================================================
    # MIDDLEWARE
    # ============================================================
    allow_origins = (
        ["*"] if settings.allowed_origins == "*" else [o.strip() for o in settings.allowed_origins.split(",")]
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000.0
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "%s %s -> %d (%.1f ms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={"request_id": request_id},
        )
        return response

    # ============================================================
    # ERROR MAPPING
    # ============================================================
    @app.exception_handler(errors.GridError)
    async def grid_error_handler(request: Request, exc: errors.GridError) -> JSONResponse:
        body = exc.to_dict()
        body.setdefault("errors", [])
        headers = {}
        if isinstance(exc, errors.TransientStoreError):
            headers["Retry-After"] = str(RETRY_AFTER_S)
            logger.warning("Store unavailable on %s %s: %s", request.method, request.url.path, exc.message)
        elif exc.status_code >= 500:
            logger.error("Unhandled grid error on %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=body, headers=headers)

    # ============================================================
    # ROUTERS
    # ============================================================
    app.include_router(routes_health.router, tags=["health"])
    app.include_router(routes_elements.router, prefix="/elements", tags=["elements"])
    app.include_router(routes_topology.router, prefix="/topology", tags=["topology"])
    app.include_router(routes_measurements.router, prefix="/measurements", tags=["measurements"])
    app.include_router(routes_events.router, prefix="/events", tags=["events"])

    return app


app = create_app()
