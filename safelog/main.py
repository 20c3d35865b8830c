"""Application factory wiring correlation, masking and request logging."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Iterable

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse, Response

from .config import Settings
from .constants import CORRELATION_ID_HEADER, Layer
from .exceptions import AppException, BusinessException
from .logging import (
    BusinessExceptionLogEntry,
    DatabaseLogSink,
    ExceptionLogEntry,
    LoggerSink,
    LogService,
    LogSink,
    SensitiveDataMasker,
    SensitiveDataOptions,
    SinkManager,
    configure_logging,
)
from .middleware.correlation import CorrelationIdMiddleware
from .middleware.logging import RequestLoggingMiddleware


def build_sinks(settings: Settings) -> list[LogSink]:
    sinks: list[LogSink] = [LoggerSink()]
    if settings.log_database_url:
        database_sink = DatabaseLogSink(settings.log_database_url)
        database_sink.create_schema()
        sinks.append(database_sink)
    return sinks


def _correlation_id(request: Request) -> str | None:
    context = getattr(request.state, "correlation_context", None)
    return context.correlation_id if context else None


def create_app(
    settings: Settings | None = None,
    *,
    sinks: Iterable[LogSink] | None = None,
    configure: bool = True,
) -> FastAPI:
    """Build the FastAPI app. ``sinks`` replaces the defaults derived from settings."""

    settings = settings or Settings.from_env()
    masker = SensitiveDataMasker(SensitiveDataOptions.from_settings(settings))
    if configure:
        configure_logging(settings, masker)

    sink_manager = SinkManager(build_sinks(settings) if sinks is None else sinks, masker)
    log_service = LogService.from_settings(settings, sink_manager, masker)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        flusher = asyncio.create_task(log_service.run_flusher(settings.log_flush_interval))
        try:
            yield
        finally:
            flusher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await flusher
            log_service.flush()

    app = FastAPI(
        title=settings.application_name,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
    )
    app.state.settings = settings
    app.state.masker = masker
    app.state.sink_manager = sink_manager
    app.state.log_service = log_service

    app.add_middleware(RequestLoggingMiddleware, log_service=log_service, settings=settings)
    app.add_middleware(CorrelationIdMiddleware)

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException) -> Response:
        """Log the failure and return a problem body that is safe to show users."""

        entry = BusinessExceptionLogEntry.from_business_exception(exc, layer=Layer.SERVER_API)
        entry.request_path = request.url.path
        entry.http_method = request.method
        log_service.log_business_exception(entry)

        correlation_id = _correlation_id(request)
        content = {
            "error_code": exc.error_code,
            "message": exc.user_friendly_message or exc.message,
            "suggested_action": exc.suggested_action,
            "validation_errors": exc.validation_errors,
            "correlation_id": correlation_id,
        }
        headers = {CORRELATION_ID_HEADER: correlation_id} if correlation_id else None
        return ORJSONResponse(
            status_code=exc.status_code,
            content={key: value for key, value in content.items() if value is not None},
            headers=headers,
        )

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> Response:
        """Hide internal error details behind the error code and correlation id."""

        entry = ExceptionLogEntry.from_exception(exc, exc.layer)
        entry.request_path = request.url.path
        entry.http_method = request.method
        entry.is_handled = True
        log_service.log_exception(entry)

        correlation_id = _correlation_id(request)
        content = {"error_code": exc.error_code, "message": "An internal error occurred."}
        if correlation_id:
            content["correlation_id"] = correlation_id
        return ORJSONResponse(status_code=exc.status_code, content=content)

    @app.get("/health")
    async def health() -> dict[str, object]:
        return {"status": "ok", "log_buffer": log_service.stats()}

    return app


__all__ = ["build_sinks", "create_app"]
