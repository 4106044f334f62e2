# =============================================================================
# File: portico/core/body_parsing.py
# Description: JSON / urlencoded request body parsing with a size cap
# =============================================================================

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Union
from urllib.parse import parse_qsl

from starlette.datastructures import Headers
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("portico.body_parsing")

PARSED_BODY_KEY = "parsed_body"
DEFAULT_BODY_LIMIT = 10 * 1024 * 1024

JSON_MEDIA_TYPE = "application/json"
URLENCODED_MEDIA_TYPE = "application/x-www-form-urlencoded"


class BodyParseError(Exception):
    """Request body rejected by the parser"""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def body_kind(content_type: Optional[str]) -> Optional[str]:
    """'json', 'urlencoded' or None for bodies this stage leaves alone"""
    if not content_type:
        return None
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type == JSON_MEDIA_TYPE or media_type.endswith("+json"):
        return "json"
    if media_type == URLENCODED_MEDIA_TYPE:
        return "urlencoded"
    return None


def parse_json_body(body: bytes) -> Any:
    """Strict JSON: only objects and arrays are accepted; empty body is {}"""
    if not body.strip():
        return {}
    try:
        value = json.loads(body.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise BodyParseError(f"invalid body encoding: {e.reason}", 400) from e
    except json.JSONDecodeError as e:
        raise BodyParseError(f"invalid JSON: {e.msg} at position {e.pos}", 400) from e
    if not isinstance(value, (dict, list)):
        raise BodyParseError("invalid JSON: top-level value must be an object or array", 400)
    return value


def parse_urlencoded_body(body: bytes) -> Dict[str, Union[str, List[str]]]:
    """Flat key/value pairs; repeated keys collect into a list"""
    parsed: Dict[str, Union[str, List[str]]] = {}
    for key, value in parse_qsl(body.decode("utf-8", errors="replace"), keep_blank_values=True):
        if key in parsed:
            existing = parsed[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                parsed[key] = [existing, value]
        else:
            parsed[key] = value
    return parsed


def get_parsed_body(request: Request) -> Any:
    """Parsed JSON / urlencoded body of the current request, or None"""
    return getattr(request.state, PARSED_BODY_KEY, None)


class BodyParsingMiddleware:
    """
    Reads JSON and urlencoded bodies up to the limit, stores the parsed value
    on request.state.parsed_body and replays the raw bytes downstream so route
    handlers can still read the body themselves.
    """

    def __init__(self, app: ASGIApp, limit: int = DEFAULT_BODY_LIMIT) -> None:
        self.app = app
        self.limit = limit

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        kind = body_kind(headers.get("content-type"))
        if kind is None:
            await self.app(scope, receive, send)
            return

        try:
            body = await self._read_body(headers, receive)
            parsed = parse_json_body(body) if kind == "json" else parse_urlencoded_body(body)
        except BodyParseError as e:
            logger.warning(f"Rejected {kind} body on {scope['method']} {scope['path']}: {e.message}")
            response = JSONResponse({"message": e.message}, status_code=e.status_code)
            await response(scope, receive, send)
            return

        scope.setdefault("state", {})[PARSED_BODY_KEY] = parsed

        replayed = False

        async def replay_receive() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay_receive, send)

    async def _read_body(self, headers: Headers, receive: Receive) -> bytes:
        declared = headers.get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > self.limit:
            raise BodyParseError("request entity too large", 413)

        chunks = []
        size = 0
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                break
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > self.limit:
                raise BodyParseError("request entity too large", 413)
            chunks.append(chunk)
            if not message.get("more_body", False):
                break
        return b"".join(chunks)
