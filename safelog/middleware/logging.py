"""Request/response logging middleware that emits masked log entries."""

from __future__ import annotations

import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from ..config import Settings
from ..constants import Layer, LogLevel
from ..logging import (
    CorrelationContext,
    ExceptionLogEntry,
    LogService,
    PerformanceLogEntry,
    RequestLogEntry,
    ResponseLogEntry,
    get_correlation_context,
)

logger = logging.getLogger("safelog.access")

_TEXTUAL_TYPES = (
    "application/json",
    "application/xml",
    "application/x-www-form-urlencoded",
    "application/problem+json",
    "text/",
)


def _is_loggable_body(content_type: str | None) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type == "text/event-stream":
        return False
    return media_type.endswith("+json") or media_type.startswith(_TEXTUAL_TYPES)


def _truncate(text: str, limit: int) -> str:
    if limit and len(text) > limit:
        return text[:limit] + "...[truncated]"
    return text


def _level_for_status(status_code: int) -> LogLevel:
    if status_code >= 500:
        return LogLevel.ERROR
    if status_code >= 400:
        return LogLevel.WARNING
    return LogLevel.INFORMATION


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Record every request and response as masked structured entries."""

    noise_paths = {"/health", "/healthz", "/ready", "/live"}
    excluded_headers = {
        "authorization",
        "proxy-authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
        "x-csrf-token",
    }

    def __init__(
        self,
        app: ASGIApp,
        log_service: LogService | None = None,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(app)
        settings = settings or Settings.from_env()
        self._log_service = log_service
        self.request_body_max_length = settings.request_body_max_length
        self.response_body_max_length = settings.response_body_max_length
        self.slow_request_ms = settings.slow_request_ms

    def _resolve_service(self, request: Request) -> LogService | None:
        if self._log_service is not None:
            return self._log_service
        return getattr(request.app.state, "log_service", None)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        service = self._resolve_service(request)
        if service is None:
            logger.warning("No log service configured; request logging is disabled")
            return await call_next(request)

        start_ns = time.perf_counter_ns()
        context: CorrelationContext | None = getattr(
            request.state, "correlation_context", None
        ) or get_correlation_context()
        quiet = request.url.path in self.noise_paths

        request_body = await self._read_request_body(request, service)
        request_entry = self._build_request_entry(request, request_body)
        if not quiet:
            service.log_request(request_entry, context)

        try:
            response = await call_next(request)
        except Exception as exc:
            if quiet:
                service.log_request(request_entry, context)
            entry = ExceptionLogEntry.from_exception(exc, Layer.SERVER_API)
            entry.request_path = request.url.path
            entry.http_method = request.method
            entry.request_body = request_body
            service.log_exception(entry, context)
            self._log_performance(service, request, context, start_ns, 500)
            raise

        status_code = response.status_code
        if quiet and status_code < 400:
            return response
        if quiet:
            service.log_request(request_entry, context)

        response, response_body = await self._capture_response_body(response, service)
        duration_ms = (time.perf_counter_ns() - start_ns) // 1_000_000
        service.log_response(
            ResponseLogEntry(
                message=f"{request.method} {request.url.path} -> {status_code}",
                level=_level_for_status(status_code),
                status_code=status_code,
                response_body=response_body,
                response_headers=self._filter_headers(response.headers),
                content_type=response.headers.get("content-type"),
                content_length=_parse_length(response.headers.get("content-length")),
                duration_ms=duration_ms,
                request_log_id=request_entry.log_id,
            ),
            context,
        )
        self._log_performance(service, request, context, start_ns, status_code)
        return response

    async def _read_request_body(self, request: Request, service: LogService) -> str | None:
        if not _is_loggable_body(request.headers.get("content-type")):
            return None
        body = await request.body()
        if not body:
            return None
        text = service.masker.mask_json(body.decode("utf-8", "replace")) or ""
        return _truncate(text, self.request_body_max_length)

    async def _capture_response_body(
        self, response: Response, service: LogService
    ) -> tuple[Response, str | None]:
        if not _is_loggable_body(response.headers.get("content-type")):
            return response, None
        body_iterator = getattr(response, "body_iterator", None)
        if body_iterator is None:
            body = getattr(response, "body", b"")
        else:
            chunks = [chunk async for chunk in body_iterator]
            body = b"".join(
                chunk if isinstance(chunk, bytes) else chunk.encode("utf-8") for chunk in chunks
            )
            replacement = Response(
                content=body,
                status_code=response.status_code,
                background=response.background,
            )
            replacement.raw_headers = list(response.raw_headers)
            response = replacement
        if not body:
            return response, None
        text = service.masker.mask_json(body.decode("utf-8", "replace")) or ""
        return response, _truncate(text, self.response_body_max_length)

    def _build_request_entry(self, request: Request, body: str | None) -> RequestLogEntry:
        authorization = request.headers.get("authorization")
        return RequestLogEntry(
            message=f"{request.method} {request.url.path}",
            http_method=request.method,
            request_path=request.url.path,
            query_string=request.url.query or None,
            request_body=body,
            request_headers=self._filter_headers(request.headers),
            content_type=request.headers.get("content-type"),
            content_length=_parse_length(request.headers.get("content-length")),
            user_agent=request.headers.get("user-agent"),
            referer=request.headers.get("referer"),
            origin=request.headers.get("origin"),
            authorization_type=authorization.split(" ", 1)[0] if authorization else None,
            is_authenticated=bool(authorization),
        )

    def _filter_headers(self, headers) -> dict[str, str]:
        return {
            key: value
            for key, value in headers.items()
            if key.lower() not in self.excluded_headers
        }

    def _log_performance(
        self,
        service: LogService,
        request: Request,
        context: CorrelationContext | None,
        start_ns: int,
        status_code: int,
    ) -> None:
        duration_ms = (time.perf_counter_ns() - start_ns) // 1_000_000
        if duration_ms <= self.slow_request_ms:
            return
        operation = f"{request.method} {request.url.path}"
        service.log_performance(
            PerformanceLogEntry(
                message=f"Slow request: {operation} took {duration_ms} ms",
                layer=Layer.SERVER_API,
                level=LogLevel.WARNING,
                operation_name=operation,
                operation_type="HttpRequest",
                duration_ms=duration_ms,
                is_slow_request=True,
                slow_request_threshold_ms=int(self.slow_request_ms),
                success=status_code < 500,
            ),
            context,
        )


def _parse_length(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


__all__ = ["RequestLoggingMiddleware"]
