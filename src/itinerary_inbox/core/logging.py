from __future__ import annotations

import contextvars
import json
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Every JSON log line carries whichever of these are set for the current request/task.
_CONTEXT: dict[str, contextvars.ContextVar[str | None]] = {
    name: contextvars.ContextVar(name, default=None)
    for name in ("request_id", "user_id", "celery_task_id", "message_hash")
}
# Hashes are 64 hex chars; a prefix is enough to correlate lines.
_TRUNCATE = {"message_hash": 16}

_configured = False


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        if ts.endswith("+00:00"):
            ts = ts[:-6] + "Z"
        payload: dict[str, Any] = {
            "ts": ts,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        event = getattr(record, "event", None)
        if event:
            payload["event"] = event
        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            payload.update({k: v for k, v in fields.items() if v is not None})
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=True)


def configure_logging() -> None:
    global _configured  # noqa: PLW0603
    if _configured:
        return
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger("itinerary_inbox")
    root.setLevel(level)
    root.handlers = [handler]
    # Keep records visible to pytest's caplog.
    root.propagate = os.getenv("ENVIRONMENT") == "test"
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


def _bind(name: str, value: str | None) -> contextvars.Token:
    return _CONTEXT[name].set(value)


def set_request_context(*, request_id: str) -> list[contextvars.Token]:
    return [_bind("request_id", request_id), _bind("user_id", None)]


def reset_request_context(tokens: list[contextvars.Token]) -> None:
    for token in reversed(tokens):
        token.var.reset(token)


def set_user_context(user_id: str | None) -> contextvars.Token:
    return _bind("user_id", user_id)


def set_task_context(task_id: str | None) -> contextvars.Token:
    return _bind("celery_task_id", task_id)


def set_message_context(message_hash: str | None) -> contextvars.Token:
    return _bind("message_hash", message_hash)


def reset_context(token: contextvars.Token) -> None:
    token.var.reset(token)


reset_user_context = reset_context
reset_task_context = reset_context
reset_message_context = reset_context


def _merge_fields(fields: dict[str, Any]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for name, var in _CONTEXT.items():
        value = var.get()
        if value:
            payload[name] = value[: _TRUNCATE[name]] if name in _TRUNCATE else value
    payload.update({k: v for k, v in fields.items() if v is not None})
    return payload


def log_event(
    logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any
) -> None:
    logger.log(level, event, extra={"event": event, "fields": _merge_fields(fields)})


def log_exception(logger: logging.Logger, event: str, **fields: Any) -> None:
    logger.exception(event, extra={"event": event, "fields": _merge_fields(fields)})


def monotonic_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tags every log line of a request with its x-request-id and echoes the header back."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        tokens = set_request_context(request_id=request_id)
        logger = get_logger(__name__)
        start = time.monotonic()
        try:
            response = await call_next(request)
            response.headers["x-request-id"] = request_id
            log_event(
                logger,
                "http.request.finish",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=monotonic_ms(start),
            )
            return response
        except Exception:
            log_exception(
                logger,
                "http.request.error",
                method=request.method,
                path=request.url.path,
                duration_ms=monotonic_ms(start),
            )
            raise
        finally:
            reset_request_context(tokens)
