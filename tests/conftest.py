import logging

import pytest

from safelog.config import Settings
from safelog.logging import (
    CorrelationContext,
    LogService,
    LogSink,
    SensitiveDataMasker,
    SinkManager,
    bind_correlation_context,
    reset_correlation_context,
)


class RecordingSink(LogSink):
    """Keeps every batch it receives so tests can inspect them."""

    name = "recording"

    def __init__(self, *, enabled: bool = True) -> None:
        super().__init__(enabled=enabled)
        self.batches = []

    @property
    def entries(self):
        return [entry for batch in self.batches for entry in batch]

    def write_batch(self, entries):
        self.batches.append(list(entries))


class FailingSink(LogSink):
    name = "failing"

    def write_batch(self, entries):
        raise RuntimeError("sink unavailable")


@pytest.fixture
def settings():
    return Settings(
        application_name="orders-api",
        application_version="1.2.3",
        environment="test",
        log_json=True,
        slow_request_ms=10_000,
    )


@pytest.fixture
def masker():
    return SensitiveDataMasker()


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def log_service(recording_sink, masker):
    return LogService(
        SinkManager([recording_sink], masker),
        masker,
        application_name="orders-api",
        application_version="1.2.3",
        environment="test",
    )


@pytest.fixture
def correlation_context():
    context = CorrelationContext.create_from_upstream("corr-123", "parent-456")
    context.user_id = "user-42"
    context.client_ip = "203.0.113.7"
    token = bind_correlation_context(context)
    try:
        yield context
    finally:
        reset_correlation_context(token)


@pytest.fixture
def restore_root_handlers():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def failing_sink():
    return FailingSink()
