from __future__ import annotations

import json
import logging
from contextvars import ContextVar, Token
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
tenant_id_var: ContextVar[int | None] = ContextVar("tenant_id", default=None)

# Always emitted, in this order, right after the message.
CONTEXT_FIELDS = ("request_id", "tenant_id")

_RESERVED_LOG_RECORD_FIELDS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


def bind_request_context(request_id: str | None, tenant_id: int | None) -> tuple[Token, Token]:
    return request_id_var.set(request_id), tenant_id_var.set(tenant_id)


def reset_request_context(tokens: tuple[Token, Token]) -> None:
    request_token, tenant_token = tokens
    request_id_var.reset(request_token)
    tenant_id_var.reset(tenant_token)


def _json_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    ``request_id`` and ``tenant_id`` come from ``extra=`` when given and
    otherwise from the request context bound by the HTTP middleware, so
    service and job loggers carry them without threading them through.
    """

    def __init__(self, service: str = "site_attendance") -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None) or request_id_var.get(),
            "tenant_id": getattr(record, "tenant_id", None) or tenant_id_var.get(),
        }

        for key, value in record.__dict__.items():
            if key in _RESERVED_LOG_RECORD_FIELDS or key in CONTEXT_FIELDS or key.startswith("_"):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_value, ensure_ascii=True)


def setup_json_logging(level: str = "INFO", *, service: str = "site_attendance") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter(service=service))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())
