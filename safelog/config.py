"""Environment-driven configuration for the logging pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Final

DEFAULT_SERVICE_NAME: Final[str] = "safelog"


def _get_env(name: str, *, default: str | None = None, required: bool = False) -> str | None:
    value = os.getenv(name)
    if value is None:
        if required:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return default
    return value.strip()


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _get_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = _get_env(name)
    if not raw:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc
    if parsed < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}")
    return parsed


def _get_float(name: str, default: float) -> float:
    raw = _get_env(name)
    if not raw:
        return default
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc
    if parsed < 0:
        raise RuntimeError(f"{name} must not be negative")
    return parsed


def _get_list(name: str) -> tuple[str, ...] | None:
    raw = _get_env(name)
    if raw is None:
        return None
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    """Process wide configuration, read once at startup."""

    service_name: str = DEFAULT_SERVICE_NAME
    application_name: str = DEFAULT_SERVICE_NAME
    application_version: str | None = None
    environment: str = "production"
    log_level: str = "INFO"
    log_json: bool = True
    log_file: str | None = None
    log_database_url: str | None = None
    log_buffer_size: int = 10_000
    log_batch_size: int = 100
    log_flush_interval: float = 5.0
    # ``None`` keeps the built-in sensitive field list.
    sensitive_fields: tuple[str, ...] | None = None
    sensitive_fields_extra: tuple[str, ...] = field(default_factory=tuple)
    request_body_max_length: int = 32_768
    response_body_max_length: int = 32_768
    slow_request_ms: float = 500.0

    @classmethod
    def from_env(cls) -> "Settings":
        service_name = _get_env("SERVICE_NAME") or DEFAULT_SERVICE_NAME
        return cls(
            service_name=service_name,
            application_name=_get_env("APPLICATION_NAME") or service_name,
            application_version=_get_env("APPLICATION_VERSION") or None,
            environment=(_get_env("APP_ENV", default="production") or "production").lower(),
            log_level=(_get_env("LOG_LEVEL", default="INFO") or "INFO").upper(),
            log_json=_get_bool("LOG_JSON", True),
            log_file=_get_env("LOG_FILE") or None,
            log_database_url=_get_env("LOG_DATABASE_URL") or None,
            log_buffer_size=_get_int("LOG_BUFFER_SIZE", 10_000, minimum=1),
            log_batch_size=_get_int("LOG_BATCH_SIZE", 100, minimum=1),
            log_flush_interval=_get_float("LOG_FLUSH_INTERVAL", 5.0),
            sensitive_fields=_get_list("SENSITIVE_FIELDS"),
            sensitive_fields_extra=_get_list("SENSITIVE_FIELDS_EXTRA") or (),
            request_body_max_length=_get_int("REQUEST_BODY_MAX_LENGTH", 32_768),
            response_body_max_length=_get_int("RESPONSE_BODY_MAX_LENGTH", 32_768),
            slow_request_ms=_get_float("SLOW_REQUEST_MS", 500.0),
        )
