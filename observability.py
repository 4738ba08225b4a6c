"""Observability helpers: structured JSON logging and CloudWatch Embedded Metrics.

Import `init_observability` and call it early in your FastAPI app to activate.
"""
from __future__ import annotations

import logging
import os

import structlog
from aws_embedded_metrics import metric_scope
from aws_embedded_metrics.config import get_config

__all__ = [
    "init_observability",
    "metric_scope",  # re-export for convenience
]


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "console":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def _setup_logging() -> None:
    """Route structlog through stdlib logging; LOG_FORMAT picks JSON (default) or console output."""

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            _renderer(os.getenv("LOG_FORMAT", "json").lower()),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        root_logger.addHandler(logging.StreamHandler())
    root_logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    for noisy in ("uvicorn.access", "httpx", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _setup_metrics(service_name: str) -> None:
    """Outside AWS, write EMF records to stdout instead of probing for an agent."""
    config = get_config()
    config.service_name = service_name
    if not config.environment:
        config.environment = "local"


def init_observability(service_name: str = "DoUp") -> None:
    """Setup logging & metrics. Call once at process start."""

    _setup_logging()
    _setup_metrics(service_name)

    structlog.get_logger(__name__).info("Observability initialized")
