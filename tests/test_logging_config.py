import json
import logging
import os
import stat
import sys
from dataclasses import replace

import pytest

from safelog import logging as safe_logging
from safelog.logging import (
    FIELD_MAP,
    MASKED_VALUE,
    CorrelationContextFilter,
    ECSJsonFormatter,
    PrivacyFilter,
    SecureWatchedFileHandler,
    SensitiveDataMasker,
    SensitiveDataOptions,
    configure_logging,
    sanitize_value,
)
from safelog.logging.privacy import MAX_FIELD_LENGTH


def make_record(msg="sample", args=()):
    return logging.LogRecord(
        name="safelog.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=0,
        msg=msg,
        args=args,
        exc_info=None,
    )


def test_privacy_filter_masks_extras_and_message():
    record = make_record("login for %s\r\nforged line", ("bob",))
    record.password = "hunter2"
    record.payload = '{"token":"abc","page":1}'
    record.note = "first\nsecond"
    record.headers = {"Authorization": "Bearer abc", "Accept": "text/html"}
    record.log_entry = {"request_body": "x" * 5000}

    assert PrivacyFilter().filter(record)

    assert record.password == MASKED_VALUE
    assert record.payload == '{"token":"***MASKED***","page":1}'
    assert record.note == "firstsecond"
    assert record.headers == {"Authorization": MASKED_VALUE, "Accept": "text/html"}
    assert record.getMessage() == "login for bobforged line"
    assert len(record.log_entry["request_body"]) == 5000


def test_privacy_filter_uses_configured_masker():
    masker = SensitiveDataMasker(SensitiveDataOptions(sensitive_fields=frozenset({"sku"})))
    record = make_record()
    record.sku = "A-1"
    record.password = "kept"

    PrivacyFilter(masker).filter(record)

    assert record.sku == MASKED_VALUE
    assert record.password == "kept"


def test_sanitize_value_truncates_long_strings():
    value = sanitize_value("comment", "y" * (MAX_FIELD_LENGTH + 50))

    assert value.startswith("y" * MAX_FIELD_LENGTH)
    assert value.endswith("[truncated]")


def test_sanitize_value_keeps_stack_trace_lines():
    trace = 'Traceback (most recent call last):\n  File "x.py"\nValueError: token=abc'

    assert sanitize_value("stack_trace", trace) == (
        'Traceback (most recent call last):\n  File "x.py"\nValueError: token=***MASKED***'
    )


def test_correlation_filter_adds_context_fields(correlation_context):
    record = make_record()

    assert CorrelationContextFilter().filter(record)

    assert record.correlation_id == "corr-123"
    assert record.parent_correlation_id == "parent-456"
    assert record.user_id == "user-42"
    assert record.server_name == correlation_context.server_name


def test_correlation_filter_keeps_explicit_fields(correlation_context):
    record = make_record()
    record.correlation_id = "from-entry"

    CorrelationContextFilter().filter(record)

    assert record.correlation_id == "from-entry"


def test_ecs_formatter_maps_fields():
    formatter = ECSJsonFormatter(service_name="orders-api")
    record = make_record("POST /orders")
    record.correlation_id = "corr-1"
    record.user_id = "user-1"
    record.client_ip = "198.51.100.1"
    record.log_type = "Request"
    record.log_entry = {"http_method": "POST"}

    payload = json.loads(formatter.format(record))

    for alias in FIELD_MAP:
        assert alias not in payload
    assert payload["trace.id"] == "corr-1"
    assert payload["user.id"] == "user-1"
    assert payload["client.ip"] == "198.51.100.1"
    assert payload["log.type"] == "Request"
    assert payload["safelog.entry"] == {"http_method": "POST"}
    assert payload["service.name"] == "orders-api"
    assert payload["event.dataset"] == "orders-api.app"
    assert payload["log.level"] == "INFO"
    assert "@timestamp" in payload


def test_ecs_formatter_adds_error_stack():
    formatter = ECSJsonFormatter()
    try:
        raise ValueError("broken")
    except ValueError:
        record = logging.LogRecord(
            "safelog.test", logging.ERROR, __file__, 0, "failed", (), sys.exc_info()
        )

    payload = json.loads(formatter.format(record))

    assert "ValueError: broken" in payload["error.stack"]


@pytest.mark.usefixtures("restore_root_handlers")
def test_configure_logging_writes_masked_json_file(settings, tmp_path):
    log_path = tmp_path / "logs" / "app.log"
    configure_logging(replace(settings, log_file=str(log_path)))

    logging.getLogger("safelog.test").info(
        "user signed in", extra={"password": "hunter2", "user_name": "bob"}
    )
    for handler in logging.getLogger().handlers:
        handler.flush()

    lines = [json.loads(line) for line in log_path.read_text().splitlines()]
    entry = next(line for line in lines if line["message"] == "user signed in")
    assert entry["password"] == MASKED_VALUE
    assert entry["user_name"] == "bob"
    assert "hunter2" not in log_path.read_text()
    assert stat.S_IMODE(os.stat(log_path).st_mode) == 0o600
    assert any(
        isinstance(handler, SecureWatchedFileHandler)
        for handler in logging.getLogger().handlers
    )


@pytest.mark.usefixtures("restore_root_handlers")
def test_configure_logging_plain_format(settings, tmp_path):
    log_path = tmp_path / "plain.log"
    configure_logging(replace(settings, log_json=False, log_file=str(log_path)))

    logging.getLogger("safelog.test").warning("token=abc leaked?")
    for handler in logging.getLogger().handlers:
        handler.flush()

    text = log_path.read_text()
    assert "WARNING [safelog.test] token=***MASKED*** leaked?" in text


def test_package_exports():
    for name in safe_logging.__all__:
        assert hasattr(safe_logging, name)


def _failed_record():
    try:
        raise ValueError("login failed password=hunter2")
    except ValueError:
        return logging.LogRecord(
            "safelog.test", logging.ERROR, __file__, 0, "failed", (), sys.exc_info()
        )


def test_privacy_filter_masks_exception_stack():
    record = _failed_record()

    PrivacyFilter().filter(record)

    assert record.exc_info is None
    assert "password=***MASKED***" in record.error_stack
    assert "hunter2" not in record.error_stack
    assert "\n" in record.error_stack
    assert record.exc_text == record.error_stack


def test_filtered_exception_renders_masked_stack():
    record = _failed_record()
    PrivacyFilter().filter(record)

    payload = json.loads(ECSJsonFormatter().format(record))
    plain = logging.Formatter("%(message)s").format(record)

    assert "ValueError: login failed password=***MASKED***" in payload["error.stack"]
    assert "exc_info" not in payload
    assert "hunter2" not in json.dumps(payload)
    assert "password=***MASKED***" in plain
    assert "hunter2" not in plain


@pytest.mark.usefixtures("restore_root_handlers")
def test_configure_logging_masks_logged_exceptions(settings, tmp_path, capsys):
    log_path = tmp_path / "errors.log"
    configure_logging(replace(settings, log_file=str(log_path)))

    try:
        raise ValueError("login failed password=hunter2")
    except ValueError:
        logging.getLogger("safelog.test").exception("flush failed")
    for handler in logging.getLogger().handlers:
        handler.flush()

    text = log_path.read_text()
    lines = [json.loads(line) for line in text.splitlines()]
    entry = next(line for line in lines if line["message"] == "flush failed")
    assert "password=***MASKED***" in entry["error.stack"]
    assert "hunter2" not in text
    assert "hunter2" not in capsys.readouterr().out
