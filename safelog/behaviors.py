"""Cross-cutting behaviors wrapped around application handlers.

A :class:`HandlerPipeline` runs a request object through a chain of
behaviors before the handler itself, in the order they were given::

    pipeline = HandlerPipeline([LoggingBehavior(service), ExceptionLoggingBehavior(service)])
    result = await pipeline.send(CreateOrder(...), create_order_handler)
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

from pydantic import BaseModel

from .constants import Layer, LogLevel
from .exceptions import BusinessException
from .logging import (
    BusinessExceptionLogEntry,
    ExceptionLogEntry,
    LogService,
    PerformanceLogEntry,
    get_correlation_context,
)

Handler = Callable[[Any], Awaitable[Any]]
NextHandler = Callable[[], Awaitable[Any]]

DEFAULT_SLOW_HANDLER_MS = 500

logger = logging.getLogger("safelog.pipeline")


def _correlation_id() -> str | None:
    context = get_correlation_context()
    return context.correlation_id if context else None


def _request_parameters(request: Any) -> dict[str, Any] | None:
    """Shallow field snapshot of ``request``; nested values are masked later."""

    try:
        if isinstance(request, BaseModel):
            return request.model_dump(mode="json")
        if dataclasses.is_dataclass(request) and not isinstance(request, type):
            return {f.name: getattr(request, f.name) for f in dataclasses.fields(request)}
        if isinstance(request, Mapping):
            return dict(request)
    except Exception as exc:
        # Never let parameter capture replace the handler's own error.
        logger.debug(
            "Could not capture parameters of %s",
            type(request).__name__,
            extra={"error_type": type(exc).__name__},
        )
    return None


class PipelineBehavior:
    async def handle(self, request: Any, next_handler: NextHandler) -> Any:
        raise NotImplementedError


class HandlerPipeline:
    def __init__(self, behaviors: Iterable[PipelineBehavior] = ()) -> None:
        self.behaviors = list(behaviors)

    async def send(self, request: Any, handler: Handler) -> Any:
        async def invoke(index: int) -> Any:
            if index == len(self.behaviors):
                return await handler(request)
            return await self.behaviors[index].handle(request, lambda: invoke(index + 1))

        return await invoke(0)


class LoggingBehavior(PipelineBehavior):
    """Log handler start, completion, failure and slow runs."""

    def __init__(
        self,
        log_service: LogService | None = None,
        slow_threshold_ms: int = DEFAULT_SLOW_HANDLER_MS,
    ) -> None:
        self.log_service = log_service
        self.slow_threshold_ms = slow_threshold_ms
        self.logger = logging.getLogger("safelog.pipeline")

    async def handle(self, request: Any, next_handler: NextHandler) -> Any:
        name = type(request).__name__
        extra = {"correlation_id": _correlation_id(), "event_action": name}
        self.logger.info("Handling %s", name, extra=extra)
        start_ns = time.perf_counter_ns()
        try:
            response = await next_handler()
        except Exception as exc:
            elapsed_ms = (time.perf_counter_ns() - start_ns) // 1_000_000
            self.logger.error(
                "Failed %s after %d ms",
                name,
                elapsed_ms,
                extra={**extra, "error_type": type(exc).__name__, "error_message": str(exc)},
            )
            raise

        elapsed_ms = (time.perf_counter_ns() - start_ns) // 1_000_000
        if elapsed_ms > self.slow_threshold_ms:
            self.logger.warning("Slow handler %s took %d ms", name, elapsed_ms, extra=extra)
            if self.log_service is not None:
                self.log_service.log_performance(
                    PerformanceLogEntry(
                        message=f"Slow handler: {name} took {elapsed_ms} ms",
                        layer=Layer.BUSINESS,
                        level=LogLevel.WARNING,
                        operation_name=name,
                        operation_type="Handler",
                        duration_ms=elapsed_ms,
                        is_slow_request=True,
                        slow_request_threshold_ms=self.slow_threshold_ms,
                    )
                )
        self.logger.info("Handled %s in %d ms", name, elapsed_ms, extra=extra)
        return response


class ExceptionLoggingBehavior(PipelineBehavior):
    """Record handler failures as exception entries, then re-raise."""

    def __init__(self, log_service: LogService, layer: Layer = Layer.BUSINESS) -> None:
        self.log_service = log_service
        self.layer = layer

    async def handle(self, request: Any, next_handler: NextHandler) -> Any:
        try:
            return await next_handler()
        except BusinessException as exc:
            entry = BusinessExceptionLogEntry.from_business_exception(exc, layer=self.layer)
            entry.business_operation = type(request).__name__
            entry.method_name = type(request).__name__
            self.log_service.log_business_exception(entry)
            raise
        except Exception as exc:
            entry = ExceptionLogEntry.from_exception(exc, self.layer)
            entry.method_name = type(request).__name__
            entry.method_parameters = _request_parameters(request)
            self.log_service.log_exception(entry)
            raise
