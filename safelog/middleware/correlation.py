"""Middleware that establishes the correlation context for each request."""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import ORJSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from ..constants import (
    CORRELATION_ID_HEADER,
    PARENT_CORRELATION_ID_HEADER,
    SERVER_NAME_HEADER,
)
from ..logging import (
    CorrelationContext,
    bind_correlation_context,
    reset_correlation_context,
    sanitize_for_logging,
)
from ..utils.network import get_client_ip

MAX_CORRELATION_ID_LENGTH = 128
INTERNAL_ERROR_CODE = "INTERNAL_ERROR"

logger = logging.getLogger("safelog.middleware")


def _clean_header(value: str | None, limit: int = MAX_CORRELATION_ID_LENGTH) -> str | None:
    cleaned = sanitize_for_logging(value)
    if not cleaned or not cleaned.strip():
        return None
    return cleaned.strip()[:limit]


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Create or continue a correlation id and make it current for the request.

    Unhandled errors are answered here with a generic 500 body so that the
    caller still receives the correlation id it needs to report the failure.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        upstream_id = _clean_header(request.headers.get(CORRELATION_ID_HEADER))
        parent_id = _clean_header(request.headers.get(PARENT_CORRELATION_ID_HEADER))
        if upstream_id:
            context = CorrelationContext.create_from_upstream(upstream_id, parent_id)
        else:
            context = CorrelationContext.create()

        context.client_ip = get_client_ip(request)
        context.user_agent = _clean_header(request.headers.get("User-Agent"), 512)
        context.request_path = request.url.path
        request.state.correlation_context = context

        token = bind_correlation_context(context)
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "Unhandled error on %s %s",
                request.method,
                request.url.path,
                exc_info=exc,
                extra={"error_type": type(exc).__name__},
            )
            response = ORJSONResponse(
                status_code=500,
                content={
                    "error_code": INTERNAL_ERROR_CODE,
                    "message": "An internal error occurred.",
                    "correlation_id": context.correlation_id,
                },
            )
        finally:
            reset_correlation_context(token)

        response.headers[CORRELATION_ID_HEADER] = context.correlation_id
        response.headers[SERVER_NAME_HEADER] = context.server_name
        return response


__all__ = ["CorrelationIdMiddleware"]
