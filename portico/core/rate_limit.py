# =============================================================================
# File: portico/core/rate_limit.py
# Description: Fixed-window, per-client rate limiting for the API prefix
# =============================================================================

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import ASGIApp

logger = logging.getLogger("portico.rate_limit")


@dataclass
class RateLimitConfig:
    """Rate limit configuration."""

    window_seconds: int = 15 * 60
    max_requests: int = 100
    message: str = "Too many requests from this IP, please try again later."
    status_code: int = 429

    # Only paths under this prefix are counted
    path_prefix: str = "/api"
    exempt_paths: FrozenSet[str] = frozenset()

    include_headers: bool = True
    header_prefix: str = "RateLimit"


@dataclass
class RateLimitDecision:
    """Outcome of one hit against the limiter."""
    allowed: bool
    limit: int
    remaining: int
    reset_after: int  # seconds until the client's window resets


@dataclass
class _Window:
    started_at: float
    hits: int = 0


@dataclass
class FixedWindowLimiter:
    """
    In-memory fixed-window counter keyed by client.

    Each client's window starts on its first hit and lasts window_seconds;
    the counter resets once the window has expired. Expired windows are
    pruned lazily, at most once per window length.
    """

    window_seconds: int
    max_requests: int
    clock: Callable[[], float] = time.monotonic
    _windows: Dict[str, _Window] = field(default_factory=dict)
    _last_prune: float = field(default=0.0)

    def hit(self, key: str) -> RateLimitDecision:
        now = self.clock()
        self._prune(now)

        window = self._windows.get(key)
        if window is None or now - window.started_at >= self.window_seconds:
            window = _Window(started_at=now)
            self._windows[key] = window

        window.hits += 1
        reset_after = max(0, math.ceil(window.started_at + self.window_seconds - now))

        return RateLimitDecision(
            allowed=window.hits <= self.max_requests,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - window.hits),
            reset_after=reset_after,
        )

    @property
    def tracked_clients(self) -> int:
        return len(self._windows)

    def _prune(self, now: float) -> None:
        if now - self._last_prune < self.window_seconds:
            return
        self._last_prune = now
        expired = [
            key for key, window in self._windows.items()
            if now - window.started_at >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]


def client_key(request: Request) -> str:
    """Rate limit key: the peer address of the connection."""
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rejects requests over the limit before they reach downstream stages."""

    def __init__(self, app: ASGIApp, config: Optional[RateLimitConfig] = None,
                 limiter: Optional[FixedWindowLimiter] = None):
        super().__init__(app)
        self.config = config or RateLimitConfig()
        self.limiter = limiter or FixedWindowLimiter(
            window_seconds=self.config.window_seconds,
            max_requests=self.config.max_requests,
        )

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if not path.startswith(self.config.path_prefix) or path in self.config.exempt_paths:
            return await call_next(request)

        key = client_key(request)
        decision = self.limiter.hit(key)

        if not decision.allowed:
            logger.warning(f"Rate limit exceeded for {key} on {request.method} {request.url.path}")
            response = PlainTextResponse(self.config.message, status_code=self.config.status_code)
            response.headers["Retry-After"] = str(decision.reset_after)
            self.add_headers(response, decision)
            return response

        response = await call_next(request)
        self.add_headers(response, decision)
        return response

    def add_headers(self, response: Response, decision: RateLimitDecision) -> None:
        if not self.config.include_headers:
            return
        prefix = self.config.header_prefix
        response.headers[f"{prefix}-Limit"] = str(decision.limit)
        response.headers[f"{prefix}-Remaining"] = str(decision.remaining)
        response.headers[f"{prefix}-Reset"] = str(decision.reset_after)
