"""Header names and enumerations shared by every logging layer."""

from __future__ import annotations

from enum import Enum
from typing import Final

CORRELATION_ID_HEADER: Final[str] = "X-Correlation-ID"
PARENT_CORRELATION_ID_HEADER: Final[str] = "X-Parent-Correlation-ID"
SERVER_NAME_HEADER: Final[str] = "X-Server-Name"


class LogType(str, Enum):
    GENERAL = "General"
    REQUEST = "Request"
    RESPONSE = "Response"
    EXCEPTION = "Exception"
    BUSINESS_EXCEPTION = "BusinessException"
    AUDIT = "Audit"
    PERFORMANCE = "Performance"
    SECURITY = "Security"


class Layer(str, Enum):
    CLIENT_API = "ClientApi"
    SERVER_API = "ServerApi"
    BUSINESS = "Business"
    DOMAIN = "Domain"
    PROXY = "Proxy"
    INFRASTRUCTURE = "Infrastructure"


class ExceptionCategory(str, Enum):
    SYSTEM = "System"
    DATABASE = "Database"
    NETWORK = "Network"
    BUSINESS = "Business"
    VALIDATION = "Validation"
    SECURITY = "Security"
    EXTERNAL = "External"


class LogLevel(str, Enum):
    """Entry severity, mapped onto stdlib levels by the logger sink."""

    DEBUG = "Debug"
    INFORMATION = "Information"
    WARNING = "Warning"
    ERROR = "Error"
    CRITICAL = "Critical"
