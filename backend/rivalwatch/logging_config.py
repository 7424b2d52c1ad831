"""JSON structured logging for the API and worker processes."""
from __future__ import annotations

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from rivalwatch.config import settings

_NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "celery": logging.INFO,
    "google": logging.WARNING,
    "trafilatura": logging.WARNING,
}


def setup_logging(service: str = "rivalwatch-api") -> None:
    """Send every record to stdout as one JSON object tagged with ``service``.

    Fields passed through ``extra=`` (workflow ids, retry flags, change
    counts) land as top-level keys.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
            static_fields={"service": service, "env": settings.APP_ENV},
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.APP_LOG_LEVEL)

    for name, level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.DB_ECHO else logging.WARNING)
