"""Request scoped correlation context for logging."""

from __future__ import annotations

import hashlib
import socket
import time
import uuid
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, TypeVar

T = TypeVar("T")

# Connecting a UDP socket sends nothing; it only asks the kernel for a route.
_ROUTE_TARGET_ADDRESS = ("8.8.8.8", 65530)


def _host_hash(server_name: str) -> str:
    return hashlib.sha1(server_name.encode("utf-8")).hexdigest()[:4].upper()


def generate_correlation_id(server_name: str | None = None) -> str:
    """Return ``<utc seconds>-<8 hex random>-<4 hex host hash>``.

    The timestamp prefix keeps ids roughly sortable by creation time.
    """

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    random_part = uuid.uuid4().hex[:8]
    return f"{timestamp}-{random_part}-{_host_hash(server_name or socket.gethostname())}"


def resolve_server_ip() -> str | None:
    """Return the local address of the outbound route, or ``None`` offline."""

    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(_ROUTE_TARGET_ADDRESS)
            return sock.getsockname()[0]
    except OSError:
        return None


class CorrelationContext:
    """Identity and metadata carried through every log entry of one request.

    The correlation id, parent id, server identity and start time are fixed at
    construction. User, client and session details stay writable because they
    are usually resolved later in the request (authentication, for example).
    """

    def __init__(
        self,
        correlation_id: str | None = None,
        parent_correlation_id: str | None = None,
    ) -> None:
        self._server_name = socket.gethostname()
        self._server_ip = resolve_server_ip()
        existing = correlation_id.strip() if correlation_id else ""
        self._correlation_id = existing or generate_correlation_id(self._server_name)
        self._parent_correlation_id = parent_correlation_id or None
        self._request_start_time = datetime.now(timezone.utc)
        self._started_ns = time.perf_counter_ns()

        self.user_id: str | None = None
        self.client_ip: str | None = None
        self.user_agent: str | None = None
        self.request_path: str | None = None
        self.session_id: str | None = None
        self.custom_properties: dict[str, Any] = {}

    @classmethod
    def create(cls) -> "CorrelationContext":
        return cls()

    @classmethod
    def create_from_upstream(
        cls, existing_id: str | None, parent_id: str | None = None
    ) -> "CorrelationContext":
        """Continue a trace started by a caller.

        A missing or blank ``existing_id`` falls back to a fresh id.
        """

        return cls(existing_id, parent_id)

    @property
    def correlation_id(self) -> str:
        return self._correlation_id

    @property
    def parent_correlation_id(self) -> str | None:
        return self._parent_correlation_id

    @property
    def server_name(self) -> str:
        return self._server_name

    @property
    def server_ip(self) -> str | None:
        return self._server_ip

    @property
    def request_start_time(self) -> datetime:
        return self._request_start_time

    def elapsed_ms(self) -> int:
        return (time.perf_counter_ns() - self._started_ns) // 1_000_000

    def set_property(self, key: str, value: Any) -> None:
        self.custom_properties[key] = value

    def get_property(self, key: str, expected_type: type[T] = object) -> T | None:  # type: ignore[assignment]
        """Return the stored value when it is an ``expected_type``, else ``None``."""

        value = self.custom_properties.get(key)
        if value is None:
            return None
        try:
            matches = isinstance(value, expected_type)
        except TypeError:
            # Parameterised generics such as ``list[int]`` cannot be checked.
            return None
        if not matches or (isinstance(value, bool) and expected_type is int):
            return None
        return value

    def to_log_fields(self) -> dict[str, str]:
        fields = {
            "correlation_id": self._correlation_id,
            "parent_correlation_id": self._parent_correlation_id,
            "user_id": self.user_id,
            "client_ip": self.client_ip,
            "user_agent": self.user_agent,
            "request_path": self.request_path,
            "session_id": self.session_id,
            "server_name": self._server_name,
            "server_ip": self._server_ip,
        }
        return {key: value for key, value in fields.items() if value is not None}

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(correlation_id={self._correlation_id!r}, "
            f"parent_correlation_id={self._parent_correlation_id!r})"
        )


correlation_context_var: ContextVar[CorrelationContext | None] = ContextVar(
    "correlation_context", default=None
)


def bind_correlation_context(context: CorrelationContext) -> Token[CorrelationContext | None]:
    """Make ``context`` current for log records emitted by this task."""

    return correlation_context_var.set(context)


def reset_correlation_context(token: Token[CorrelationContext | None]) -> None:
    correlation_context_var.reset(token)


def get_correlation_context() -> CorrelationContext | None:
    return correlation_context_var.get()


def set_user_context(user_id: str | None) -> None:
    """Record the authenticated user on the current request's context."""

    context = correlation_context_var.get()
    if context is not None:
        context.user_id = user_id
