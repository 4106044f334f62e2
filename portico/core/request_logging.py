# =============================================================================
# File: portico/core/request_logging.py
# Description: Per-request latency logging for the monitored path prefix
# =============================================================================

"""
Request Logger

Every request gets a RequestRecord. Handlers (or the default response class)
hand the structured payload to the record through record_body(); the
middleware never touches response bytes. When the final body chunk goes out
the record is turned into one line:

    GET /api/items 200 in 12ms :: {"items":[]}

Lines longer than the configured maximum are cut and end with a single
ellipsis character.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("portico.request")

REQUEST_RECORD_KEY = "request_record"
ELLIPSIS = "…"

_NOT_CAPTURED = object()


@dataclass
class RequestRecord:
    """One HTTP exchange, from entry to the final body chunk"""
    method: str
    path: str
    started_at: float = field(default_factory=time.monotonic)
    status_code: Optional[int] = None
    duration_ms: Optional[int] = None
    payload: Any = _NOT_CAPTURED
    logged: bool = False

    @property
    def has_payload(self) -> bool:
        return self.payload is not _NOT_CAPTURED

    def record_body(self, payload: Any) -> None:
        """Keep the structured body the handler produced (last write wins)"""
        self.payload = payload

    def finish(self) -> None:
        self.duration_ms = int((time.monotonic() - self.started_at) * 1000)


def format_log_line(record: RequestRecord, max_length: int = 80) -> str:
    """Build the single log line for a finished request."""
    line = f"{record.method} {record.path} {record.status_code} in {record.duration_ms}ms"
    if record.has_payload and record.payload is not None:
        summary = json.dumps(record.payload, ensure_ascii=False, separators=(",", ":"), default=str)
        line += f" :: {summary}"

    if len(line) > max_length:
        line = line[:max_length - 1] + ELLIPSIS

    return line


def get_request_record(request: Request) -> Optional[RequestRecord]:
    """Record of the current request, if the logger middleware is installed"""
    return getattr(request.state, REQUEST_RECORD_KEY, None)


class RecordingJSONResponse(JSONResponse):
    """
    JSONResponse that reports its structured content to the request record.

    Used as the application's default response class, so any dict/list a
    route returns ends up in the log summary without the handler doing
    anything.
    """

    payload: Any = None

    def render(self, content: Any) -> bytes:
        self.payload = content
        return super().render(content)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        record = scope.get("state", {}).get(REQUEST_RECORD_KEY)
        if record is not None:
            record.record_body(self.payload)
        await super().__call__(scope, receive, send)


class RequestLoggingMiddleware:
    """
    Pure ASGI middleware: observes http.response.start / http.response.body
    and logs once per request under the monitored prefix.
    """

    def __init__(self, app: ASGIApp, prefix: str = "/api", max_length: int = 80) -> None:
        self.app = app
        self.prefix = prefix
        self.max_length = max_length

    def is_monitored(self, path: str) -> bool:
        return path.startswith(self.prefix)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        record = RequestRecord(method=scope["method"], path=scope["path"])
        scope.setdefault("state", {})[REQUEST_RECORD_KEY] = record

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                record.status_code = message["status"]
            await send(message)
            if message["type"] == "http.response.body" and not message.get("more_body", False):
                self._finalize(record)

        await self.app(scope, receive, send_wrapper)

    def _finalize(self, record: RequestRecord) -> None:
        if record.logged:
            return
        record.logged = True
        if not self.is_monitored(record.path):
            return

        record.finish()
        logger.info(
            format_log_line(record, self.max_length),
            extra={
                "request_method": record.method,
                "request_path": record.path,
                "status_code": record.status_code,
                "duration_ms": record.duration_ms,
            },
        )
