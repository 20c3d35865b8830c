"""Custom JSON formatter compatible with ECS."""

from __future__ import annotations

import logging
import traceback
from datetime import datetime, timezone
from typing import Any

from pythonjsonlogger import jsonlogger

from ..config import DEFAULT_SERVICE_NAME

FIELD_MAP = {
    "correlation_id": "trace.id",
    "parent_correlation_id": "trace.parent.id",
    "user_id": "user.id",
    "client_ip": "client.ip",
    "user_agent": "user_agent.original",
    "request_path": "url.path",
    "session_id": "session.id",
    "server_name": "host.name",
    "server_ip": "host.ip",
    "http_request_method": "http.request.method",
    "http_status_code": "http.response.status_code",
    "event_duration": "event.duration",
    "event_dataset": "event.dataset",
    "event_action": "event.action",
    "log_type": "log.type",
    "layer": "log.layer",
    "log_entry": "safelog.entry",
    "error_type": "error.type",
    "error_message": "error.message",
    "error_stack": "error.stack",
}


class ECSJsonFormatter(jsonlogger.JsonFormatter):
    """Emit ECS aligned fields, with correlation data under ``trace.*``."""

    def __init__(
        self, *args: Any, service_name: str = DEFAULT_SERVICE_NAME, **kwargs: Any
    ) -> None:
        super().__init__(*args, **kwargs)
        self.service_name = service_name

    def add_fields(
        self, log_record: dict[str, Any], record: logging.LogRecord, message_dict: dict[str, Any]
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if "@timestamp" not in log_record:
            log_record["@timestamp"] = datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat()

        log_record.setdefault("log.level", record.levelname)
        log_record.setdefault("log.logger", record.name)
        log_record.setdefault("message", record.getMessage())

        dataset = getattr(record, "event_dataset", None) or log_record.get("event.dataset")
        log_record["event.dataset"] = dataset or f"{self.service_name}.app"
        log_record["service.name"] = self.service_name

        for attr, ecs_name in FIELD_MAP.items():
            value = log_record.pop(attr, getattr(record, attr, None))
            if value is not None:
                log_record[ecs_name] = value

        # The base class renders the traceback under ``exc_info``.
        exc_text = log_record.pop("exc_info", None)
        if "error.stack" not in log_record:
            if record.exc_info:
                log_record["error.stack"] = "".join(
                    traceback.format_exception(*record.exc_info)
                ).strip()
            elif exc_text:
                log_record["error.stack"] = exc_text

        keys_to_delete = []
        for key, value in log_record.items():
            if value is None:
                keys_to_delete.append(key)
            elif isinstance(value, (set, bytes)):
                log_record[key] = str(value)
        for key in keys_to_delete:
            log_record.pop(key, None)
