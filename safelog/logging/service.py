"""Buffered, non-blocking entry point for structured log entries."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from typing import TYPE_CHECKING, Any

from ..config import DEFAULT_SERVICE_NAME
from ..constants import Layer
from .context import CorrelationContext, get_correlation_context
from .entries import (
    AuditLogEntry,
    BaseLogEntry,
    BusinessExceptionLogEntry,
    ExceptionLogEntry,
    PerformanceLogEntry,
    RequestLogEntry,
    ResponseLogEntry,
)
from .masking import DEFAULT_MASKER, SensitiveDataMasker
from .sinks import SinkManager

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger("safelog.service")


class LogService:
    """Enrich, mask and buffer entries; hand them to the sinks in batches.

    The ``log_*`` methods never block on I/O. When the buffer is full the
    oldest entry is dropped. :meth:`flush` does the actual writing and is
    meant to run off the event loop, see :meth:`run_flusher`.
    """

    def __init__(
        self,
        sink_manager: SinkManager,
        masker: SensitiveDataMasker | None = None,
        *,
        application_name: str = DEFAULT_SERVICE_NAME,
        application_version: str | None = None,
        environment: str | None = None,
        buffer_size: int = 10_000,
        batch_size: int = 100,
    ) -> None:
        if buffer_size < 1 or batch_size < 1:
            raise ValueError("buffer_size and batch_size must be positive")
        self.sink_manager = sink_manager
        self.masker = masker or DEFAULT_MASKER
        self.application_name = application_name
        self.application_version = application_version
        self.environment = environment
        self.batch_size = batch_size
        self.dropped_count = 0
        self._buffer: deque[BaseLogEntry] = deque(maxlen=buffer_size)
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        sink_manager: SinkManager,
        masker: SensitiveDataMasker | None = None,
    ) -> "LogService":
        return cls(
            sink_manager,
            masker,
            application_name=settings.application_name,
            application_version=settings.application_version,
            environment=settings.environment,
            buffer_size=settings.log_buffer_size,
            batch_size=settings.log_batch_size,
        )

    def log(self, entry: BaseLogEntry, context: CorrelationContext | None = None) -> BaseLogEntry:
        """Enrich ``entry`` from ``context`` (or the bound one) and enqueue it."""

        entry.enrich(
            context or get_correlation_context(),
            application_name=self.application_name,
            application_version=self.application_version,
            environment=self.environment,
        )
        entry.mask(self.masker)
        with self._lock:
            if len(self._buffer) == self._buffer.maxlen:
                self.dropped_count += 1
            self._buffer.append(entry)
        return entry

    def log_request(
        self, entry: RequestLogEntry, context: CorrelationContext | None = None
    ) -> RequestLogEntry:
        self.log(entry, context)
        return entry

    def log_response(
        self, entry: ResponseLogEntry, context: CorrelationContext | None = None
    ) -> ResponseLogEntry:
        self.log(entry, context)
        return entry

    def log_exception(
        self, entry: ExceptionLogEntry, context: CorrelationContext | None = None
    ) -> ExceptionLogEntry:
        self.log(entry, context)
        logger.error(
            "Exception: %s - %s",
            entry.exception_type,
            entry.exception_message,
            extra={"correlation_id": entry.correlation_id or None},
        )
        return entry

    def log_business_exception(
        self, entry: BusinessExceptionLogEntry, context: CorrelationContext | None = None
    ) -> BusinessExceptionLogEntry:
        self.log(entry, context)
        return entry

    def log_audit(
        self, entry: AuditLogEntry, context: CorrelationContext | None = None
    ) -> AuditLogEntry:
        self.log(entry, context)
        return entry

    def log_performance(
        self, entry: PerformanceLogEntry, context: CorrelationContext | None = None
    ) -> PerformanceLogEntry:
        self.log(entry, context)
        return entry

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._buffer)

    def drain(self) -> list[BaseLogEntry]:
        """Remove and return everything buffered, without writing it."""

        with self._lock:
            entries = list(self._buffer)
            self._buffer.clear()
        return entries

    def flush(self) -> int:
        """Write buffered entries to the sinks and return how many were handed off."""

        written = 0
        with self._flush_lock:
            while True:
                with self._lock:
                    count = min(self.batch_size, len(self._buffer))
                    batch = [self._buffer.popleft() for _ in range(count)]
                if not batch:
                    break
                self.sink_manager.write(batch)
                written += len(batch)
        return written

    async def run_flusher(self, interval: float) -> None:
        """Flush every ``interval`` seconds until cancelled."""

        while True:
            await asyncio.sleep(interval)
            try:
                await asyncio.to_thread(self.flush)
            except Exception:  # noqa: BLE001 - keep the flusher alive
                logger.exception("Flushing buffered log entries failed")

    def stats(self) -> dict[str, Any]:
        return {"pending": self.pending, "dropped": self.dropped_count}
