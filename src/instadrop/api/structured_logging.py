# src/instadrop/api/structured_logging.py
from __future__ import annotations

import json
import logging
import os
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def configure_structured_logging() -> None:
    """Configure stdlib logging for JSONL output (stdout).

    - Level from INSTADROP_LOG_LEVEL (default INFO).
    - Safe to call multiple times.
    """
    level_name = (os.environ.get("INSTADROP_LOG_LEVEL") or "INFO").strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    if getattr(root, "_instadrop_configured", False):  # type: ignore[attr-defined]
        root.setLevel(level)
        return

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root.handlers = [handler]
    root.setLevel(level)
    setattr(root, "_instadrop_configured", True)  # type: ignore[attr-defined]


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    payload: Json = {"ts_ms": _now_ms(), "event": event}
    payload.update(fields)
    try:
        msg = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        parts = [f"event={event}"] + [f"{k}={fields.get(k)!r}" for k in sorted(fields.keys())]
        msg = " ".join(parts)
    logger.log(level, msg)


def short_ref(ref: str | None, n: int = 16) -> str:
    """Truncate a tx reference for logs."""
    s = (ref or "").strip()
    return s if len(s) <= n else s[:n] + "..."


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Structured request logging middleware.

    INSTADROP_LOG_REQUESTS=0 disables it (default on).
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        raw = (os.environ.get("INSTADROP_LOG_REQUESTS") or "1").strip().lower()
        self._enabled = raw not in {"0", "false", "no", "n", "off"}
        self._logger = logging.getLogger("instadrop.http")

    def _mk_request_id(self) -> str:
        return uuid.uuid4().hex

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        started = time.monotonic()
        request_id = request.headers.get("x-request-id") or self._mk_request_id()
        request.state.request_id = request_id

        status = 500
        err: Optional[str] = None
        response: Optional[Response] = None

        try:
            response = await call_next(request)
            status = int(getattr(response, "status_code", 200) or 200)
            response.headers.setdefault("x-request-id", request_id)
            return response
        except Exception as e:
            err = type(e).__name__
            raise
        finally:
            dur_ms = int((time.monotonic() - started) * 1000)
            log_event(
                self._logger,
                "http_request",
                request_id=request_id,
                method=request.method,
                path=str(request.url.path or ""),
                status=status,
                duration_ms=dur_ms,
                client=str(getattr(request.client, "host", "")) if request.client else "",
                error=err,
            )
