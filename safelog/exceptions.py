"""Application exception hierarchy used for log categorisation."""

from __future__ import annotations

from typing import Any

from .constants import Layer


class AppException(Exception):
    """Base class carrying an error code and the raising layer."""

    default_error_code = "UNKNOWN"
    default_layer = Layer.INFRASTRUCTURE
    status_code = 500

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        *,
        layer: Layer | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.layer = layer or self.default_layer
        self.additional_data: dict[str, Any] = {}

    def with_data(self, key: str, value: Any) -> "AppException":
        self.additional_data[key] = value
        return self


class BusinessException(AppException):
    """A business rule was violated; safe to show to the caller."""

    default_error_code = "BUSINESS_ERROR"
    default_layer = Layer.BUSINESS
    status_code = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        *,
        user_friendly_message: str | None = None,
        suggested_action: str | None = None,
        validation_errors: dict[str, list[str]] | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, error_code)
        self.user_friendly_message = user_friendly_message
        self.suggested_action = suggested_action
        self.validation_errors = validation_errors
        if status_code is not None:
            self.status_code = status_code

    def with_user_message(self, message: str) -> "BusinessException":
        self.user_friendly_message = message
        return self

    def with_suggestion(self, suggestion: str) -> "BusinessException":
        self.suggested_action = suggestion
        return self


class ValidationException(BusinessException):
    default_error_code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(self, errors: dict[str, list[str]], message: str = "Validation failed") -> None:
        super().__init__(message, validation_errors=errors)


class NotFoundException(BusinessException):
    default_error_code = "NOT_FOUND"
    status_code = 404


class DatabaseException(AppException):
    default_error_code = "DATABASE_ERROR"


class ExternalServiceException(AppException):
    default_error_code = "EXTERNAL_SERVICE_ERROR"
    default_layer = Layer.PROXY
    status_code = 502

    def __init__(self, message: str, service_name: str | None = None) -> None:
        super().__init__(message)
        self.service_name = service_name


class UnauthorizedException(AppException):
    default_error_code = "UNAUTHORIZED"
    status_code = 401


class ForbiddenException(AppException):
    default_error_code = "FORBIDDEN"
    status_code = 403
