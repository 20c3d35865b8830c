"""Logging filters that enrich and sanitise records."""

from __future__ import annotations

import logging
import traceback

from .context import correlation_context_var
from .masking import DEFAULT_MASKER, SensitiveDataMasker
from .privacy import sanitize_text, sanitize_value

# Standard LogRecord attributes that are never user controlled.
_SKIPPED_ATTRIBUTES = {
    "exc_info",
    "exc_text",
    "stack_info",
    "msg",
    "args",
    "name",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "funcName",
    "lineno",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "process",
    "processName",
    "taskName",
    # Entries are masked before they reach the logger sink.
    "log_entry",
}


class PrivacyFilter(logging.Filter):
    """Ensure sensitive payloads and control sequences never hit the logs."""

    def __init__(self, masker: SensitiveDataMasker | None = None) -> None:
        super().__init__()
        self.masker = masker or DEFAULT_MASKER

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        for key in list(record.__dict__.keys()):
            if key in _SKIPPED_ATTRIBUTES:
                continue
            record.__dict__[key] = sanitize_value(key, record.__dict__[key], self.masker)
        if record.exc_info:
            # Formatters render ``exc_info`` themselves, after every filter.
            stack = self.masker.mask_text(
                "".join(traceback.format_exception(*record.exc_info)).strip()
            )
            if not getattr(record, "error_stack", None):
                record.error_stack = stack
            record.exc_info = None
            record.exc_text = stack
        elif record.exc_text:
            record.exc_text = self.masker.mask_text(record.exc_text)
        if isinstance(record.msg, str):
            record.msg = sanitize_text(record.msg, self.masker)
        if record.args:
            if isinstance(record.args, tuple):
                record.args = tuple(
                    sanitize_value("arg", arg, self.masker) for arg in record.args
                )
            elif isinstance(record.args, dict):
                record.args = {
                    k: sanitize_value(k, v, self.masker) for k, v in record.args.items()
                }
        return True


class CorrelationContextFilter(logging.Filter):
    """Attach the current request's correlation fields to log records."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        context = correlation_context_var.get(None)
        if context is None:
            return True
        for key, value in context.to_log_fields().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True
