"""Destinations for masked log entries."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from sqlalchemy.engine import Engine

from ..constants import LogLevel
from ..database import Base, make_engine, make_session_factory
from ..models import LogEntryRecord
from .entries import BaseLogEntry
from .masking import DEFAULT_MASKER, SensitiveDataMasker

logger = logging.getLogger("safelog.sinks")

_STDLIB_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFORMATION: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.CRITICAL: logging.CRITICAL,
}


class LogSink:
    """Base class for entry destinations."""

    name = "base"

    def __init__(self, *, enabled: bool = True) -> None:
        self.enabled = enabled

    def write_batch(self, entries: Sequence[BaseLogEntry]) -> None:
        raise NotImplementedError


class LoggerSink(LogSink):
    """Emit every entry as one structured record on a stdlib logger."""

    name = "logger"

    def __init__(self, logger_name: str = "safelog.entries", *, enabled: bool = True) -> None:
        super().__init__(enabled=enabled)
        self.logger = logging.getLogger(logger_name)

    def write_batch(self, entries: Sequence[BaseLogEntry]) -> None:
        for entry in entries:
            level = _STDLIB_LEVELS.get(entry.level, logging.INFO)
            if not self.logger.isEnabledFor(level):
                continue
            extra = {
                "log_type": entry.log_type.value,
                "layer": entry.layer.value,
                "correlation_id": entry.correlation_id or None,
                "parent_correlation_id": entry.parent_correlation_id,
                "user_id": entry.user_id,
                "client_ip": entry.client_ip,
                "log_entry": entry.payload(),
            }
            self.logger.log(level, entry.message or entry.log_type.value, extra=extra)


class DatabaseLogSink(LogSink):
    """Persist entries to the ``log_entries`` table, one transaction per batch."""

    name = "database"

    def __init__(
        self,
        url: str | None = None,
        *,
        engine: Engine | None = None,
        enabled: bool = True,
    ) -> None:
        super().__init__(enabled=enabled)
        if engine is None:
            if not url:
                raise ValueError("DatabaseLogSink needs a database URL or an engine")
            engine = make_engine(url)
        self.engine = engine
        self._session_factory = make_session_factory(engine)

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine, tables=[LogEntryRecord.__table__])

    def write_batch(self, entries: Sequence[BaseLogEntry]) -> None:
        if not entries:
            return
        with self._session_factory.begin() as session:
            session.add_all(self._to_record(entry) for entry in entries)

    @staticmethod
    def _to_record(entry: BaseLogEntry) -> LogEntryRecord:
        return LogEntryRecord(
            log_id=entry.log_id,
            correlation_id=entry.correlation_id,
            parent_correlation_id=entry.parent_correlation_id,
            log_type=entry.log_type.value,
            layer=entry.layer.value,
            level=entry.level.value,
            message=entry.message,
            timestamp=entry.timestamp,
            server_name=entry.server_name,
            client_ip=entry.client_ip,
            user_id=entry.user_id,
            application_name=entry.application_name or None,
            environment=entry.environment,
            payload=entry.payload(),
        )


class SinkManager:
    """Fan entries out to every enabled sink.

    Entries that were never masked are masked here, so no sink sees raw data.
    A failing sink is reported on the ``safelog.sinks`` logger and does not
    stop delivery to the others.
    """

    def __init__(
        self, sinks: Iterable[LogSink] = (), masker: SensitiveDataMasker | None = None
    ) -> None:
        self.sinks: list[LogSink] = list(sinks)
        self.masker = masker or DEFAULT_MASKER

    def add_sink(self, sink: LogSink) -> None:
        self.sinks.append(sink)

    def get_sink(self, name: str) -> LogSink | None:
        for sink in self.sinks:
            if sink.name == name:
                return sink
        return None

    def write(self, entries: Sequence[BaseLogEntry]) -> None:
        if not entries:
            return
        prepared = self._prepare(entries)
        for sink in self.sinks:
            if sink.enabled:
                self._write_one(sink, prepared)

    def write_to_sink(self, name: str, entries: Sequence[BaseLogEntry]) -> None:
        sink = self.get_sink(name)
        if sink is None or not sink.enabled or not entries:
            return
        self._write_one(sink, self._prepare(entries))

    def _prepare(self, entries: Sequence[BaseLogEntry]) -> list[BaseLogEntry]:
        return [entry if entry.is_masked else entry.mask(self.masker) for entry in entries]

    def _write_one(self, sink: LogSink, entries: Sequence[BaseLogEntry]) -> None:
        try:
            sink.write_batch(entries)
        except Exception as exc:  # noqa: BLE001 - a broken sink must not break logging
            logger.error(
                "Log sink %s failed to write %d entries",
                sink.name,
                len(entries),
                extra={"error_type": type(exc).__name__, "error_message": str(exc)},
            )
