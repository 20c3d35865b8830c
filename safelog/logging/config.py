"""Public entry point for configuring application logging."""

from __future__ import annotations

import logging
import logging.config
import os
from typing import Any

from ..config import Settings
from .masking import SensitiveDataMasker, SensitiveDataOptions


def configure_logging(
    settings: Settings | None = None, masker: SensitiveDataMasker | None = None
) -> None:
    """Configure structured, masked logging for the process."""

    settings = settings or Settings.from_env()
    if masker is None:
        masker = SensitiveDataMasker(SensitiveDataOptions.from_settings(settings))
    log_level = settings.log_level.upper()
    formatter_name = "json" if settings.log_json else "plain"

    formatters: dict[str, dict[str, Any]] = {
        "json": {
            "()": "safelog.logging.formatter.ECSJsonFormatter",
            "service_name": settings.service_name,
        },
        "plain": {
            "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        },
    }

    filters = {
        "context": {"()": "safelog.logging.filters.CorrelationContextFilter"},
        "privacy": {"()": "safelog.logging.filters.PrivacyFilter", "masker": masker},
    }

    handlers: dict[str, dict[str, Any]] = {
        "stdout_json": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": formatter_name,
            "filters": ["context", "privacy"],
            "stream": "ext://sys.stdout",
        }
    }
    root_handlers = ["stdout_json"]

    if settings.log_file:
        handlers["file"] = {
            "class": "safelog.logging.handlers.SecureWatchedFileHandler",
            "level": log_level,
            "formatter": formatter_name,
            "filters": ["context", "privacy"],
            "filename": os.path.abspath(settings.log_file),
            "delay": True,
        }
        root_handlers.append("file")

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": filters,
        "handlers": handlers,
        "root": {
            "level": log_level,
            "handlers": root_handlers,
        },
        "loggers": {
            "uvicorn": {"level": "INFO", "handlers": [], "propagate": True},
            "uvicorn.error": {"level": "INFO", "handlers": [], "propagate": True},
            "uvicorn.access": {"level": "INFO", "handlers": [], "propagate": True},
            "safelog.entries": {"level": log_level, "handlers": [], "propagate": True},
            "safelog.sinks": {"level": "WARNING", "handlers": [], "propagate": True},
        },
    }

    logging.config.dictConfig(logging_config)
    logging.captureWarnings(True)
