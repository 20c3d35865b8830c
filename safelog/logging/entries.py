"""Structured log entries emitted by the request pipeline.

Every entry shares the correlation and host fields of :class:`BaseLogEntry`;
the subclasses add the payload of one kind of event. An entry must be passed
through :meth:`BaseLogEntry.mask` before a sink may see it. Each subclass
knows which of its fields hold JSON bodies, header maps or free text and
masks them accordingly.
"""

from __future__ import annotations

import traceback
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx
from sqlalchemy.exc import SQLAlchemyError

from ..constants import ExceptionCategory, Layer, LogLevel, LogType
from ..exceptions import (
    BusinessException,
    DatabaseException,
    ExternalServiceException,
    ForbiddenException,
    UnauthorizedException,
    ValidationException,
)
from .masking import MASKED_VALUE, sanitize_for_logging

if TYPE_CHECKING:
    from .context import CorrelationContext
    from .masking import SensitiveDataMasker


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_log_id() -> str:
    return uuid.uuid4().hex


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _qualified_name(cls: type) -> str:
    module = cls.__module__
    if module == "builtins":
        return cls.__qualname__
    return f"{module}.{cls.__qualname__}"


def _format_stack(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).strip()


def categorize_exception(exc: BaseException) -> ExceptionCategory:
    if isinstance(exc, ValidationException):
        return ExceptionCategory.VALIDATION
    if isinstance(exc, BusinessException):
        return ExceptionCategory.BUSINESS
    if isinstance(exc, (DatabaseException, SQLAlchemyError)):
        return ExceptionCategory.DATABASE
    if isinstance(exc, ExternalServiceException):
        return ExceptionCategory.EXTERNAL
    if isinstance(exc, (UnauthorizedException, ForbiddenException)):
        return ExceptionCategory.SECURITY
    if isinstance(exc, (httpx.HTTPError, TimeoutError, ConnectionError)):
        return ExceptionCategory.NETWORK
    return ExceptionCategory.SYSTEM


def is_transient_exception(exc: BaseException) -> bool:
    """Whether retrying the failed operation could succeed."""

    return isinstance(exc, (TimeoutError, ConnectionError, httpx.TransportError))


@dataclass
class PropertyChange:
    property_name: str
    old_value: Any = None
    new_value: Any = None


@dataclass
class BaseLogEntry:
    """Fields common to every entry. Usable directly as a generic entry."""

    message: str = ""
    layer: Layer = Layer.INFRASTRUCTURE
    level: LogLevel = LogLevel.INFORMATION
    log_type: LogType = LogType.GENERAL
    correlation_id: str = ""
    parent_correlation_id: str | None = None
    log_id: str = field(default_factory=_new_log_id)
    timestamp: datetime = field(default_factory=_utcnow)
    server_name: str | None = None
    server_ip: str | None = None
    client_ip: str | None = None
    user_id: str | None = None
    session_id: str | None = None
    class_name: str | None = None
    method_name: str | None = None
    application_name: str = ""
    application_version: str | None = None
    environment: str | None = None
    additional_data: dict[str, Any] | None = None
    is_masked: bool = field(default=False, init=False)

    def add_data(self, key: str, value: Any) -> None:
        if self.additional_data is None:
            self.additional_data = {}
        self.additional_data[key] = value

    def enrich(
        self,
        context: CorrelationContext | None,
        *,
        application_name: str | None = None,
        application_version: str | None = None,
        environment: str | None = None,
    ) -> None:
        """Stamp the entry with the request context and application metadata."""

        if context is not None:
            self.correlation_id = context.correlation_id
            self.parent_correlation_id = context.parent_correlation_id
            self.user_id = context.user_id or self.user_id
            self.client_ip = context.client_ip or self.client_ip
            self.server_name = context.server_name
            self.server_ip = context.server_ip
            self.session_id = context.session_id or self.session_id
        if not self.application_name and application_name:
            self.application_name = application_name
        if application_version is not None:
            self.application_version = application_version
        if environment is not None:
            self.environment = environment

    def mask(self, masker: SensitiveDataMasker) -> "BaseLogEntry":
        """Redact and sanitize the payload in place. Safe to call twice."""

        if not self.is_masked:
            self._mask_payload(masker)
            self.is_masked = True
        return self

    def _mask_payload(self, masker: SensitiveDataMasker) -> None:
        self.message = _clean_text(masker, self.message) or ""
        self.user_id = sanitize_for_logging(self.user_id)
        self.session_id = sanitize_for_logging(self.session_id)
        if self.additional_data is not None:
            self.additional_data = masker.mask_value(self.additional_data)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: _jsonable(getattr(self, f.name)) for f in fields(self)}

    def payload(self) -> dict[str, Any]:
        """The variant specific part of :meth:`to_dict`, without empty values."""

        data = self.to_dict()
        payload = {
            key: value
            for key, value in data.items()
            if key not in _COMMON_FIELDS and value is not None
        }
        if data.get("additional_data"):
            payload["additional_data"] = data["additional_data"]
        return payload


LogEntry = BaseLogEntry

_COMMON_FIELDS = frozenset(f.name for f in fields(BaseLogEntry))


def _clean_text(masker: SensitiveDataMasker, text: str | None) -> str | None:
    return sanitize_for_logging(masker.mask_text(text))


def _clean_headers(
    masker: SensitiveDataMasker, headers: Mapping[str, str] | None
) -> dict[str, str] | None:
    if headers is None:
        return None
    masked = masker.mask_dictionary(headers)
    return {
        sanitize_for_logging(key) or "": sanitize_for_logging(value) if isinstance(value, str) else value
        for key, value in masked.items()
    }


@dataclass
class RequestLogEntry(BaseLogEntry):
    layer: Layer = Layer.SERVER_API
    log_type: LogType = LogType.REQUEST
    http_method: str | None = None
    request_path: str | None = None
    query_string: str | None = None
    request_body: str | None = None
    request_headers: dict[str, str] | None = None
    content_type: str | None = None
    content_length: int | None = None
    user_agent: str | None = None
    referer: str | None = None
    origin: str | None = None
    authorization_type: str | None = None
    is_authenticated: bool = False
    user_roles: list[str] | None = None

    def _mask_payload(self, masker: SensitiveDataMasker) -> None:
        super()._mask_payload(masker)
        self.request_body = sanitize_for_logging(masker.mask_json(self.request_body))
        self.query_string = _clean_text(masker, self.query_string)
        self.request_headers = _clean_headers(masker, self.request_headers)
        self.request_path = sanitize_for_logging(self.request_path)
        self.user_agent = sanitize_for_logging(self.user_agent)
        self.referer = _clean_text(masker, self.referer)
        self.origin = sanitize_for_logging(self.origin)


@dataclass
class ResponseLogEntry(BaseLogEntry):
    layer: Layer = Layer.SERVER_API
    log_type: LogType = LogType.RESPONSE
    status_code: int = 0
    status_description: str | None = None
    response_body: str | None = None
    response_headers: dict[str, str] | None = None
    content_type: str | None = None
    content_length: int | None = None
    duration_ms: int = 0
    request_log_id: str | None = None

    def _mask_payload(self, masker: SensitiveDataMasker) -> None:
        super()._mask_payload(masker)
        self.response_body = sanitize_for_logging(masker.mask_json(self.response_body))
        self.response_headers = _clean_headers(masker, self.response_headers)
        self.status_description = sanitize_for_logging(self.status_description)


@dataclass
class ExceptionLogEntry(BaseLogEntry):
    level: LogLevel = LogLevel.ERROR
    log_type: LogType = LogType.EXCEPTION
    exception_type: str | None = None
    exception_message: str | None = None
    stack_trace: str | None = None
    inner_exception_type: str | None = None
    inner_exception_message: str | None = None
    inner_stack_trace: str | None = None
    request_path: str | None = None
    http_method: str | None = None
    request_body: str | None = None
    method_parameters: dict[str, Any] | None = None
    exception_category: ExceptionCategory = ExceptionCategory.SYSTEM
    is_handled: bool = False
    is_transient: bool = False
    retry_count: int | None = None
    severity: str | None = None

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        layer: Layer,
        correlation_id: str | None = None,
    ) -> "ExceptionLogEntry":
        entry = cls(
            message=f"{type(exc).__name__}: {exc}",
            layer=layer,
            correlation_id=correlation_id or "",
            exception_type=_qualified_name(type(exc)),
            exception_message=str(exc),
            stack_trace=_format_stack(exc),
            exception_category=categorize_exception(exc),
            is_transient=is_transient_exception(exc),
        )
        inner = exc.__cause__ or exc.__context__
        if inner is not None:
            entry.inner_exception_type = _qualified_name(type(inner))
            entry.inner_exception_message = str(inner)
            entry.inner_stack_trace = _format_stack(inner)
        return entry

    def _mask_payload(self, masker: SensitiveDataMasker) -> None:
        super()._mask_payload(masker)
        self.exception_message = _clean_text(masker, self.exception_message)
        self.inner_exception_message = _clean_text(masker, self.inner_exception_message)
        # Stack traces keep their line breaks; formatters encode them as one JSON string.
        self.stack_trace = masker.mask_text(self.stack_trace)
        self.inner_stack_trace = masker.mask_text(self.inner_stack_trace)
        self.request_path = sanitize_for_logging(self.request_path)
        self.request_body = sanitize_for_logging(masker.mask_json(self.request_body))
        if self.method_parameters is not None:
            self.method_parameters = masker.mask_value(self.method_parameters)


@dataclass
class BusinessExceptionLogEntry(ExceptionLogEntry):
    layer: Layer = Layer.BUSINESS
    level: LogLevel = LogLevel.WARNING
    log_type: LogType = LogType.BUSINESS_EXCEPTION
    exception_category: ExceptionCategory = ExceptionCategory.BUSINESS
    business_operation: str | None = None
    business_error_code: str | None = None
    business_error_message: str | None = None
    user_friendly_message: str | None = None
    suggested_action: str | None = None
    affected_entity: str | None = None
    affected_entity_id: str | None = None
    rule_name: str | None = None
    rule_description: str | None = None
    validation_errors: dict[str, list[str]] | None = None

    @classmethod
    def from_business_exception(
        cls,
        exc: BusinessException,
        correlation_id: str | None = None,
        layer: Layer = Layer.BUSINESS,
    ) -> "BusinessExceptionLogEntry":
        entry: BusinessExceptionLogEntry = cls.from_exception(  # type: ignore[assignment]
            exc, layer, correlation_id
        )
        entry.is_handled = True
        entry.business_error_code = exc.error_code
        entry.business_error_message = exc.message
        entry.user_friendly_message = exc.user_friendly_message
        entry.suggested_action = exc.suggested_action
        entry.validation_errors = exc.validation_errors
        if exc.additional_data:
            entry.additional_data = dict(exc.additional_data)
        return entry

    def _mask_payload(self, masker: SensitiveDataMasker) -> None:
        super()._mask_payload(masker)
        self.business_error_message = _clean_text(masker, self.business_error_message)
        self.user_friendly_message = sanitize_for_logging(self.user_friendly_message)
        self.suggested_action = sanitize_for_logging(self.suggested_action)
        if self.validation_errors is not None:
            self.validation_errors = masker.mask_value(self.validation_errors)


@dataclass
class AuditLogEntry(BaseLogEntry):
    layer: Layer = Layer.BUSINESS
    log_type: LogType = LogType.AUDIT
    action: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    old_values: str | None = None
    new_values: str | None = None
    changes: list[PropertyChange] | None = None
    is_success: bool = True
    failure_reason: str | None = None
    duration_ms: int | None = None

    def add_change(self, property_name: str, old_value: Any, new_value: Any) -> None:
        if self.changes is None:
            self.changes = []
        self.changes.append(PropertyChange(property_name, old_value, new_value))

    def _mask_payload(self, masker: SensitiveDataMasker) -> None:
        super()._mask_payload(masker)
        self.old_values = masker.mask_json(self.old_values)
        self.new_values = masker.mask_json(self.new_values)
        self.failure_reason = _clean_text(masker, self.failure_reason)
        for change in self.changes or ():
            if masker.is_sensitive_field(change.property_name):
                change.old_value = MASKED_VALUE
                change.new_value = MASKED_VALUE
            else:
                change.old_value = masker.mask_value(change.old_value)
                change.new_value = masker.mask_value(change.new_value)


@dataclass
class PerformanceLogEntry(BaseLogEntry):
    log_type: LogType = LogType.PERFORMANCE
    operation_name: str | None = None
    operation_type: str | None = None
    duration_ms: int = 0
    is_slow_request: bool = False
    slow_request_threshold_ms: int | None = None
    success: bool = True
    metadata: dict[str, Any] | None = None

    def _mask_payload(self, masker: SensitiveDataMasker) -> None:
        super()._mask_payload(masker)
        if self.metadata is not None:
            self.metadata = masker.mask_value(self.metadata)
