"""Logging and Sentry setup, plus thin helpers for spans and exception capture.

``ensure_initialized`` is called once from the FastAPI lifespan. Everything
else is safe to call before (or without) initialization: Sentry drops events
when no client is configured.
"""

import logging
import os
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from typing import Any, Iterator, Optional

import sentry_sdk

from coloringbook.config import Settings

logger = logging.getLogger(__name__)

_initialized = False


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """Console logging, plus rotating app/error files when log_dir is set."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    root_logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    root_logger.addHandler(console_handler)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_format = logging.Formatter(
            "%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "app.log"),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(file_format)
        root_logger.addHandler(file_handler)

        error_handler = RotatingFileHandler(
            os.path.join(log_dir, "errors.log"),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_format)
        root_logger.addHandler(error_handler)

    return root_logger


def ensure_initialized(settings: Settings) -> None:
    """Configure logging and Sentry exactly once per process."""
    global _initialized
    if _initialized:
        return

    setup_logging(settings.log_level, settings.log_dir)

    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=settings.sentry_traces_sample_rate,
        )
        logger.info("Sentry initialized (environment=%s)", settings.environment)
    else:
        logger.info("SENTRY_DSN not set, exceptions are only logged")

    _initialized = True


def capture_exception(error: BaseException) -> None:
    sentry_sdk.capture_exception(error)


@contextmanager
def start_span(op: str, name: str, **attributes: Any) -> Iterator[Any]:
    """Open a Sentry span and attach the given attributes as span data."""
    with sentry_sdk.start_span(op=op, name=name) as span:
        for key, value in attributes.items():
            span.set_data(key, value)
        yield span
