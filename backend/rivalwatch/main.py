"""FastAPI application: health, metrics, CORS and the pipeline APIs."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    generate_latest,
    multiprocess,
)
from pydantic import ValidationError
from starlette.responses import JSONResponse, PlainTextResponse, Response

from rivalwatch.config import settings
from rivalwatch.db import create_tables, engine
from rivalwatch.errors import (
    CompetitorNotFoundError,
    ContentNotFoundError,
    InvalidRunRangeError,
    NonRetryableError,
)
from rivalwatch.logging_config import setup_logging
from rivalwatch.observability import setup_opentelemetry
from rivalwatch.workflows.engine import WorkflowNotFoundError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    setup_opentelemetry(app)
    if settings.DB_CREATE_TABLES:
        await create_tables()
    logger.info("RivalWatch API starting", extra={"env": settings.APP_ENV})
    yield
    await engine.dispose()
    logger.info("RivalWatch API shut down")


app = FastAPI(
    title="RivalWatch",
    version="0.1.0",
    description="Competitor page snapshots, weekly diffs and subscriber reports",
    lifespan=lifespan,
)

# ── CORS ──
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.APP_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "error": str(exc)})


@app.exception_handler(NonRetryableError)
async def non_retryable_handler(request: Request, exc: NonRetryableError) -> JSONResponse:
    if isinstance(exc, (ContentNotFoundError, CompetitorNotFoundError)):
        return _error(404, exc)
    return _error(422, exc)


@app.exception_handler(WorkflowNotFoundError)
async def workflow_not_found_handler(request: Request, exc: WorkflowNotFoundError) -> JSONResponse:
    return _error(404, exc)


@app.exception_handler(InvalidRunRangeError)
async def invalid_range_handler(request: Request, exc: InvalidRunRangeError) -> JSONResponse:
    return _error(400, exc)


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _error(422, exc)


@app.exception_handler(Exception)
async def unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, exc)


from rivalwatch.api.diff import router as diff_router
from rivalwatch.api.snapshot import router as snapshot_router
from rivalwatch.api.workflow import router as workflow_router

app.include_router(workflow_router)
app.include_router(diff_router)
app.include_router(snapshot_router)


# ── Health ──
@app.get("/health", tags=["ops"])
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok", "service": "rivalwatch"}


# ── Prometheus Metrics ──
@app.get("/metrics", tags=["ops"])
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    try:
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        data = generate_latest(registry)
    except ValueError:
        # Not running in multiprocess mode
        data = generate_latest()
    return PlainTextResponse(content=data, media_type=CONTENT_TYPE_LATEST)
