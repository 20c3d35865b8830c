import asyncio
import contextlib
import logging
from collections import namedtuple

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from safelog.constants import Layer, LogLevel
from safelog.logging import (
    MASKED_VALUE,
    AuditLogEntry,
    BaseLogEntry,
    CorrelationContext,
    DatabaseLogSink,
    ExceptionLogEntry,
    LoggerSink,
    LogService,
    RequestLogEntry,
    SinkManager,
)
from safelog.models import LogEntryRecord


def test_log_enriches_and_masks_before_buffering(log_service, correlation_context):
    entry = log_service.log_request(
        RequestLogEntry(
            http_method="POST",
            request_path="/login",
            request_body='{"username":"bob","password":"hunter2"}',
        )
    )

    assert entry.is_masked
    assert entry.correlation_id == "corr-123"
    assert entry.user_id == "user-42"
    assert entry.application_version == "1.2.3"
    assert "hunter2" not in entry.request_body
    assert log_service.pending == 1


def test_explicit_context_wins_over_bound_one(log_service, correlation_context):
    other = CorrelationContext.create_from_upstream("explicit-1")

    entry = log_service.log(BaseLogEntry(message="hello"), other)

    assert entry.correlation_id == "explicit-1"


def test_flush_writes_in_batches(recording_sink, masker):
    service = LogService(SinkManager([recording_sink], masker), masker, batch_size=2)
    for index in range(5):
        service.log(BaseLogEntry(message=f"entry {index}"))

    assert service.flush() == 5
    assert [len(batch) for batch in recording_sink.batches] == [2, 2, 1]
    assert service.pending == 0
    assert service.flush() == 0


def test_full_buffer_drops_oldest(recording_sink, masker):
    service = LogService(SinkManager([recording_sink], masker), masker, buffer_size=3)
    for index in range(5):
        service.log(BaseLogEntry(message=f"entry {index}"))

    assert service.pending == 3
    assert service.stats() == {"pending": 3, "dropped": 2}
    service.flush()
    assert [entry.message for entry in recording_sink.entries] == [
        "entry 2",
        "entry 3",
        "entry 4",
    ]


def test_invalid_buffer_configuration(recording_sink):
    with pytest.raises(ValueError):
        LogService(SinkManager([recording_sink]), buffer_size=0)


def test_log_exception_also_writes_error_line(log_service, caplog):
    caplog.set_level(logging.ERROR, logger="safelog.service")

    try:
        raise ConnectionError("db host unreachable")
    except ConnectionError as exc:
        log_service.log_exception(ExceptionLogEntry.from_exception(exc, Layer.INFRASTRUCTURE))

    record = next(r for r in caplog.records if r.name == "safelog.service")
    assert record.levelno == logging.ERROR
    assert "ConnectionError" in record.getMessage()
    assert log_service.drain()[0].is_transient


def test_sink_failure_is_logged_and_swallowed(recording_sink, failing_sink, caplog):
    caplog.set_level(logging.ERROR, logger="safelog.sinks")
    manager = SinkManager([failing_sink, recording_sink])

    manager.write([BaseLogEntry(message="survives")])

    assert [entry.message for entry in recording_sink.entries] == ["survives"]
    record = next(r for r in caplog.records if r.name == "safelog.sinks")
    assert "failing" in record.getMessage()
    assert getattr(record, "error_type") == "RuntimeError"


def test_sink_manager_masks_unmasked_entries(recording_sink):
    manager = SinkManager([recording_sink])
    entry = AuditLogEntry(action="ChangePassword", new_values='{"password":"new"}')

    manager.write([entry])

    written = recording_sink.entries[0]
    assert written.is_masked
    assert written.new_values == '{"password":"***MASKED***"}'


def test_disabled_and_named_sinks(recording_sink, failing_sink):
    failing_sink.enabled = False
    manager = SinkManager([failing_sink, recording_sink])

    manager.write([BaseLogEntry(message="one")])
    manager.write_to_sink("recording", [BaseLogEntry(message="two")])
    manager.write_to_sink("missing", [BaseLogEntry(message="three")])

    assert [entry.message for entry in recording_sink.entries] == ["one", "two"]
    assert manager.get_sink("failing") is failing_sink


def test_logger_sink_emits_structured_records(masker, caplog):
    caplog.set_level(logging.DEBUG, logger="safelog.entries")
    entry = RequestLogEntry(
        message="POST /orders",
        level=LogLevel.WARNING,
        correlation_id="corr-9",
        http_method="POST",
        request_body='{"token":"abc"}',
    ).mask(masker)

    LoggerSink().write_batch([entry])

    record = next(r for r in caplog.records if r.name == "safelog.entries")
    assert record.levelno == logging.WARNING
    assert record.getMessage() == "POST /orders"
    assert getattr(record, "log_type") == "Request"
    assert getattr(record, "correlation_id") == "corr-9"
    assert getattr(record, "log_entry")["request_body"] == '{"token":"***MASKED***"}'


def test_database_sink_persists_masked_entries(masker):
    sink = DatabaseLogSink("sqlite://")
    sink.create_schema()
    entry = RequestLogEntry(
        message="POST /login",
        correlation_id="corr-db",
        http_method="POST",
        request_body='{"password":"hunter2"}',
    ).mask(masker)

    SinkManager([sink]).write([entry])

    with Session(sink.engine) as session:
        rows = session.scalars(select(LogEntryRecord)).all()
    assert len(rows) == 1
    row = rows[0]
    assert row.log_id == entry.log_id
    assert row.correlation_id == "corr-db"
    assert row.log_type == "Request"
    assert row.level == "Information"
    assert row.payload["request_body"] == '{"password":"***MASKED***"}'
    assert MASKED_VALUE in row.payload["request_body"]


def test_database_sink_requires_target():
    with pytest.raises(ValueError):
        DatabaseLogSink()


async def test_run_flusher_drains_in_background(log_service, recording_sink):
    log_service.log(BaseLogEntry(message="queued"))

    task = asyncio.create_task(log_service.run_flusher(0.01))
    for _ in range(100):
        if recording_sink.entries:
            break
        await asyncio.sleep(0.01)
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task

    assert [entry.message for entry in recording_sink.entries] == ["queued"]


def test_log_accepts_named_tuples_in_additional_data(log_service):
    Point = namedtuple("Point", ["x", "y"])
    entry = BaseLogEntry(message="moved")
    entry.add_data("position", Point(1, 2))

    logged = log_service.log(entry)

    assert logged.is_masked
    assert logged.additional_data == {"position": Point(1, 2)}
    assert log_service.pending == 1
