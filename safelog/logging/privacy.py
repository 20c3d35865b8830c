"""Utilities for removing sensitive data from log records."""

from __future__ import annotations

from typing import Any

from .masking import DEFAULT_MASKER, MASKED_VALUE, SensitiveDataMasker, sanitize_for_logging

MAX_FIELD_LENGTH = 1024

# Values under these keys keep their line breaks.
MULTILINE_KEYS = {"stack_trace", "inner_stack_trace", "error_stack"}


def _truncate(value: str) -> str:
    if len(value) > MAX_FIELD_LENGTH:
        return value[:MAX_FIELD_LENGTH] + "…[truncated]"
    return value


def _looks_like_json(value: str) -> bool:
    stripped = value.lstrip()
    return stripped.startswith(("{", "["))


def sanitize_text(value: str, masker: SensitiveDataMasker = DEFAULT_MASKER) -> str:
    """Mask and strip control sequences from a free-form log string."""

    masked = masker.mask_json(value) if _looks_like_json(value) else masker.mask_text(value)
    return sanitize_for_logging(masked) or ""


def sanitize_value(
    key: Any, value: Any, masker: SensitiveDataMasker = DEFAULT_MASKER
) -> Any:
    """Redact sensitive information and limit field size."""

    if isinstance(key, bytes):
        key_text: str | None = key.decode("utf-8", "ignore")
    elif isinstance(key, str):
        key_text = key
    else:
        key_text = None
    if key_text is not None and masker.is_sensitive_field(key_text):
        return MASKED_VALUE
    if isinstance(value, str):
        if key_text in MULTILINE_KEYS:
            return masker.mask_text(value)
        return _truncate(sanitize_text(value, masker))
    if isinstance(value, dict):
        return {k: sanitize_value(k, v, masker) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        container = type(value)
        sanitized = [sanitize_value(None, item, masker) for item in value]
        if container is tuple:
            return tuple(sanitized)
        if container is set:
            return set(sanitized)
        return sanitized
    return value
