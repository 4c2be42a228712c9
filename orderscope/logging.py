from __future__ import annotations

import json
import logging
import sys
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import IO, Any

from pydantic import BaseModel

from orderscope.errors import ChunkFetchError, FetchCancelled, OrderScopeError, RpcError

_RESERVED_KEYS = {
    "args",
    "msg",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "exc_info",
    "exc_text",
    "stack_info",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "levelname",
    "name",
}


class JsonFormatter(logging.Formatter):
    """One JSON object per line; block ranges, records and fetch errors stay structured."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key.startswith("_") or key in payload or key in _RESERVED_KEYS:
                continue
            payload[key] = to_jsonable(value)
        return json.dumps(payload, ensure_ascii=True, default=str)


def to_jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, OrderScopeError):
        return _error_payload(value)
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if is_dataclass(value) and not isinstance(value, type):
        return {key: to_jsonable(item) for key, item in asdict(value).items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, BaseException):
        return {"type": value.__class__.__name__, "message": str(value)}
    return str(value)


def _error_payload(exc: OrderScopeError) -> dict[str, Any]:
    payload: dict[str, Any] = {"type": exc.__class__.__name__, "message": str(exc)}
    if isinstance(exc, ChunkFetchError):
        payload["sub_range"] = to_jsonable(exc.sub_range)
        payload["partial_count"] = len(exc.partial)
    elif isinstance(exc, FetchCancelled):
        payload["next_range"] = to_jsonable(exc.next_range)
        payload["partial_count"] = len(exc.partial)
    elif isinstance(exc, RpcError):
        payload["method"] = exc.method
        payload["code"] = exc.code
    if exc.__cause__ is not None:
        payload["cause"] = to_jsonable(exc.__cause__)
    return payload


def setup_logging(level: str = "INFO", stream: IO[str] | None = None) -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.handlers = [handler]
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
