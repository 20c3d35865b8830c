import httpx
import pytest
from sqlalchemy.exc import OperationalError

from safelog.constants import ExceptionCategory, Layer, LogLevel, LogType
from safelog.exceptions import (
    BusinessException,
    DatabaseException,
    ExternalServiceException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from safelog.logging import (
    MASKED_VALUE,
    AuditLogEntry,
    BaseLogEntry,
    BusinessExceptionLogEntry,
    ExceptionLogEntry,
    PerformanceLogEntry,
    RequestLogEntry,
    ResponseLogEntry,
    categorize_exception,
    is_transient_exception,
)


def _raise_chained():
    try:
        raise ValueError("inner failure")
    except ValueError as exc:
        raise RuntimeError("outer failure password=hunter2") from exc


def test_request_entry_masks_payload(masker):
    entry = RequestLogEntry(
        message="POST /orders",
        http_method="POST",
        request_path="/orders",
        query_string="token=abc123&page=2",
        request_body='{"item":"book","password":"p@ss"}',
        request_headers={"Authorization": "Bearer abc", "Accept": "application/json"},
        user_agent="curl/8.0\r\nInjected: yes",
        referer="https://shop.example/?apiKey=zzz",
    )

    entry.mask(masker)

    assert entry.is_masked
    assert entry.request_body == '{"item":"book","password":"***MASKED***"}'
    assert entry.query_string == "token=***MASKED***&page=2"
    assert entry.request_headers == {
        "Authorization": MASKED_VALUE,
        "Accept": "application/json",
    }
    assert entry.user_agent == "curl/8.0Injected: yes"
    assert "zzz" not in entry.referer


def test_mask_is_idempotent(masker):
    entry = ResponseLogEntry(
        status_code=200,
        response_body='{"accessToken":"t-1","user":"bob"}',
        response_headers={"Set-Cookie": "a=b"},
    )

    entry.mask(masker)
    first = entry.to_dict()
    entry.mask(masker)

    assert entry.to_dict() == first
    assert "t-1" not in entry.response_body


def test_additional_data_is_masked(masker):
    entry = BaseLogEntry(message="checkout")
    entry.add_data("apiKey", "k-123")
    entry.add_data("cart", {"items": 2, "secret": "s"})

    entry.mask(masker)

    assert entry.additional_data == {
        "apiKey": MASKED_VALUE,
        "cart": {"items": 2, "secret": MASKED_VALUE},
    }


def test_enrich_copies_context_and_application_metadata(correlation_context):
    entry = PerformanceLogEntry(operation_name="load", duration_ms=12)

    entry.enrich(
        correlation_context,
        application_name="orders-api",
        application_version="1.2.3",
        environment="test",
    )

    assert entry.correlation_id == "corr-123"
    assert entry.parent_correlation_id == "parent-456"
    assert entry.user_id == "user-42"
    assert entry.client_ip == "203.0.113.7"
    assert entry.server_name == correlation_context.server_name
    assert entry.application_name == "orders-api"
    assert entry.environment == "test"


def test_enrich_keeps_explicit_application_name(correlation_context):
    entry = BaseLogEntry(application_name="billing")

    entry.enrich(correlation_context, application_name="orders-api")

    assert entry.application_name == "billing"


def test_exception_entry_captures_inner_exception(masker):
    with pytest.raises(RuntimeError) as excinfo:
        _raise_chained()

    entry = ExceptionLogEntry.from_exception(excinfo.value, Layer.SERVER_API, "corr-1")
    entry.mask(masker)

    assert entry.correlation_id == "corr-1"
    assert entry.level is LogLevel.ERROR
    assert entry.exception_type == "RuntimeError"
    assert entry.exception_message == "outer failure password=***MASKED***"
    assert entry.inner_exception_type == "ValueError"
    assert entry.inner_exception_message == "inner failure"
    assert "\n" in entry.stack_trace
    assert "hunter2" not in entry.stack_trace
    assert entry.exception_category is ExceptionCategory.SYSTEM
    assert not entry.is_transient


def test_business_exception_entry():
    exc = ValidationException({"email": ["required"]})
    exc.with_user_message("Please check the form").with_suggestion("Fill in email")

    entry = BusinessExceptionLogEntry.from_business_exception(exc, "corr-2")

    assert entry.log_type is LogType.BUSINESS_EXCEPTION
    assert entry.level is LogLevel.WARNING
    assert entry.layer is Layer.BUSINESS
    assert entry.is_handled
    assert entry.business_error_code == "VALIDATION_ERROR"
    assert entry.user_friendly_message == "Please check the form"
    assert entry.suggested_action == "Fill in email"
    assert entry.validation_errors == {"email": ["required"]}
    assert entry.exception_category is ExceptionCategory.VALIDATION


def test_business_exception_additional_data_is_copied(masker):
    exc = NotFoundException("Order 7 not found")
    exc.with_data("order_id", 7).with_data("token", "t")

    entry = BusinessExceptionLogEntry.from_business_exception(exc)
    entry.mask(masker)

    assert entry.business_error_code == "NOT_FOUND"
    assert entry.additional_data == {"order_id": 7, "token": MASKED_VALUE}
    assert exc.additional_data["token"] == "t"


@pytest.mark.parametrize(
    ("exc", "category"),
    [
        (ValidationException({"name": ["too long"]}), ExceptionCategory.VALIDATION),
        (BusinessException("rule broken"), ExceptionCategory.BUSINESS),
        (DatabaseException("db down"), ExceptionCategory.DATABASE),
        (OperationalError("SELECT 1", {}, Exception("gone")), ExceptionCategory.DATABASE),
        (ExternalServiceException("payment provider", "payments"), ExceptionCategory.EXTERNAL),
        (ForbiddenException("no"), ExceptionCategory.SECURITY),
        (httpx.ConnectError("refused"), ExceptionCategory.NETWORK),
        (TimeoutError(), ExceptionCategory.NETWORK),
        (KeyError("x"), ExceptionCategory.SYSTEM),
    ],
)
def test_categorize_exception(exc, category):
    assert categorize_exception(exc) is category


def test_transient_exceptions():
    assert is_transient_exception(TimeoutError())
    assert is_transient_exception(ConnectionResetError())
    assert is_transient_exception(httpx.ReadTimeout("slow"))
    assert not is_transient_exception(ValueError())


def test_audit_entry_masks_values_and_changes(masker):
    entry = AuditLogEntry(
        action="UpdateCustomer",
        entity_type="Customer",
        entity_id="c-1",
        old_values='{"name":"Old","password":"a"}',
        new_values='{"name":"New","password":"b"}',
    )
    entry.add_change("password", "a", "b")
    entry.add_change("name", "Old", "New")

    entry.mask(masker)

    assert entry.old_values == '{"name":"Old","password":"***MASKED***"}'
    assert entry.new_values == '{"name":"New","password":"***MASKED***"}'
    assert entry.changes[0].old_value == MASKED_VALUE
    assert entry.changes[0].new_value == MASKED_VALUE
    assert entry.changes[1].new_value == "New"


def test_to_dict_is_json_ready():
    entry = RequestLogEntry(http_method="GET", request_path="/orders")

    data = entry.to_dict()

    assert data["level"] == "Information"
    assert data["log_type"] == "Request"
    assert data["layer"] == "ServerApi"
    assert isinstance(data["timestamp"], str)


def test_payload_holds_variant_fields_only():
    entry = RequestLogEntry(message="GET /orders", http_method="GET", request_path="/orders")
    entry.add_data("page", 2)

    payload = entry.payload()

    assert payload["http_method"] == "GET"
    assert payload["additional_data"] == {"page": 2}
    assert "message" not in payload
    assert "correlation_id" not in payload
    assert "query_string" not in payload
