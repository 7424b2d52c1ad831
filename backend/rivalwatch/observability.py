"""Optional OpenTelemetry bootstrap (graceful no-op if the `otel` extra is absent)."""
from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


def _instrument_httpx() -> None:
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

    HTTPXClientInstrumentor().instrument()


def _instrument_celery() -> None:
    from opentelemetry.instrumentation.celery import CeleryInstrumentor

    CeleryInstrumentor().instrument()


def _instrument_sqlalchemy() -> None:
    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

    from rivalwatch.db import engine

    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


_INSTRUMENTORS = {
    "httpx": _instrument_httpx,
    "celery": _instrument_celery,
    "sqlalchemy": _instrument_sqlalchemy,
}


def setup_opentelemetry(app=None, *, service_name: str = "rivalwatch-api") -> None:
    """Install a console-exporting tracer provider once per process.

    `app` is a FastAPI instance for the API process; workers pass nothing.
    """
    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
    except Exception as exc:
        logger.info("OpenTelemetry disabled (packages missing): %s", exc)
        return

    if trace.get_tracer_provider().__class__.__name__ != "ProxyTracerProvider":
        return

    tracer_provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(tracer_provider)

    if app is not None:
        try:
            from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

            FastAPIInstrumentor.instrument_app(app)
        except Exception as exc:
            logger.info("FastAPI OTel instrumentation unavailable: %s", exc)

    for name, instrument in _INSTRUMENTORS.items():
        try:
            instrument()
        except Exception as exc:
            logger.info("%s OTel instrumentation unavailable: %s", name, exc)
