"""ORM model for persisted log entries."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class LogEntryRecord(Base):
    """One masked log entry as written by the database sink."""

    __tablename__ = "log_entries"
    __table_args__ = (
        Index("ix_log_entries_correlation_id", "correlation_id"),
        Index("ix_log_entries_timestamp", "timestamp"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    log_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    correlation_id: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    parent_correlation_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    log_type: Mapped[str] = mapped_column(String(32), nullable=False)
    layer: Mapped[str] = mapped_column(String(32), nullable=False)
    level: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    server_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    application_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    environment: Mapped[str | None] = mapped_column(String(32), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
