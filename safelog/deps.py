"""FastAPI dependencies exposing the logging pipeline to route handlers."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from .logging import CorrelationContext, LogService, SensitiveDataMasker


def get_correlation_context(request: Request) -> CorrelationContext:
    context = getattr(request.state, "correlation_context", None)
    if context is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Correlation context not initialised",
        )
    return context


def get_log_service(request: Request) -> LogService:
    return request.app.state.log_service


def get_masker(request: Request) -> SensitiveDataMasker:
    return request.app.state.masker
