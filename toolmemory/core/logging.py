# toolmemory/core/logging.py
from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, Optional

from fastapi import Request, Response

_PLAIN_FORMATS = ("plain", "text", "human")


def _payload(record: logging.LogRecord) -> Dict[str, Any]:
    # Dict messages are emitted as structured fields, anything else under "message"
    msg = record.msg
    if isinstance(msg, dict):
        return dict(msg)
    return {"message": record.getMessage()}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        out: Dict[str, Any] = {
            "level": record.levelname,
            "time": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "logger": record.name,
        }
        out.update(_payload(record))
        if record.exc_info:
            out["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(out, ensure_ascii=False, default=str)


class PlainFormatter(logging.Formatter):
    """key=value lines for local development."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        ts = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(record.created))
        head = f"{ts} | {record.levelname.ljust(5)} | {record.name}:"
        if isinstance(record.msg, dict):
            text = " ".join(f"{k}={_plain_value(v)}" for k, v in record.msg.items())
        else:
            text = record.getMessage()
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return f"{head} {text}".rstrip()


def _plain_value(value: Any) -> str:
    if isinstance(value, (dict, list)):
        text = json.dumps(value, ensure_ascii=False, default=str)
    else:
        text = str(value)
    if " " in text or ";" in text:
        text = f'"{text}"'
    return text


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())

    handler = logging.StreamHandler()
    fmt = os.getenv("LOG_FORMAT", "json").lower()
    handler.setFormatter(PlainFormatter() if fmt in _PLAIN_FORMATS else JsonFormatter())

    root.handlers.clear()
    root.addHandler(handler)


async def request_logging_middleware(request: Request, call_next):
    start = time.perf_counter()
    response: Optional[Response] = None
    try:
        response = await call_next(request)
        return response
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        logging.getLogger("app.request").info(
            {
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code if response is not None else 500,
                "duration_ms": round(duration_ms, 2),
                "tenant_id": request.headers.get("x-tenant-id"),
                "trace_id": request.headers.get("x-trace-id"),
            }
        )
