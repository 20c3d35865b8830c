"""Logging utilities organised into focused modules."""

from .config import configure_logging
from .context import (
    CorrelationContext,
    bind_correlation_context,
    correlation_context_var,
    generate_correlation_id,
    get_correlation_context,
    reset_correlation_context,
    set_user_context,
)
from .entries import (
    AuditLogEntry,
    BaseLogEntry,
    BusinessExceptionLogEntry,
    ExceptionLogEntry,
    LogEntry,
    PerformanceLogEntry,
    PropertyChange,
    RequestLogEntry,
    ResponseLogEntry,
    categorize_exception,
    is_transient_exception,
)
from .filters import CorrelationContextFilter, PrivacyFilter
from .formatter import ECSJsonFormatter, FIELD_MAP
from .handlers import SecureWatchedFileHandler
from .masking import (
    DEFAULT_MASKER,
    DEFAULT_SENSITIVE_FIELDS,
    MASKED_VALUE,
    SensitiveDataMasker,
    SensitiveDataOptions,
    sanitize_for_logging,
)
from .privacy import sanitize_value
from .service import LogService
from .sinks import DatabaseLogSink, LoggerSink, LogSink, SinkManager

__all__ = [
    "configure_logging",
    "CorrelationContext",
    "bind_correlation_context",
    "correlation_context_var",
    "generate_correlation_id",
    "get_correlation_context",
    "reset_correlation_context",
    "set_user_context",
    "AuditLogEntry",
    "BaseLogEntry",
    "BusinessExceptionLogEntry",
    "ExceptionLogEntry",
    "LogEntry",
    "PerformanceLogEntry",
    "PropertyChange",
    "RequestLogEntry",
    "ResponseLogEntry",
    "categorize_exception",
    "is_transient_exception",
    "CorrelationContextFilter",
    "PrivacyFilter",
    "ECSJsonFormatter",
    "FIELD_MAP",
    "SecureWatchedFileHandler",
    "DEFAULT_MASKER",
    "DEFAULT_SENSITIVE_FIELDS",
    "MASKED_VALUE",
    "SensitiveDataMasker",
    "SensitiveDataOptions",
    "sanitize_for_logging",
    "sanitize_value",
    "LogService",
    "DatabaseLogSink",
    "LoggerSink",
    "LogSink",
    "SinkManager",
]
