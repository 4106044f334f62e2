# =============================================================================
# File: portico/core/middleware.py
# Description: Middleware configuration for the FastAPI application
# =============================================================================

"""
Middleware pipeline, outermost first:

    1. security headers   (production only)
    2. gzip compression   (production only)
    3. API rate limiting  (production only)
    4. body parsing       (always)
    5. request logging    (always)
    6. terminal error stage (always, innermost)

Starlette's add_middleware() wraps the existing stack, so stages are added
innermost first.
"""

import logging

from starlette.middleware.gzip import GZipMiddleware

from portico.config.server_config import ServerConfig
from portico.core.body_parsing import BodyParsingMiddleware
from portico.core.exceptions import ErrorHandlingMiddleware
from portico.core.fastapi_types import FastAPI
from portico.core.health import HEALTH_PATH
from portico.core.mode import ModeSelection
from portico.core.rate_limit import RateLimitConfig, RateLimitMiddleware
from portico.core.request_logging import RequestLoggingMiddleware
from portico.core.security_headers import SecurityHeadersMiddleware

logger = logging.getLogger("portico.middleware")


def setup_middleware(app: FastAPI, config: ServerConfig, mode: ModeSelection) -> None:
    """Configure all middleware for the FastAPI application"""

    app.add_middleware(ErrorHandlingMiddleware)
    setup_request_logging(app, config)
    setup_body_parsing(app, config)

    if mode.is_production:
        setup_rate_limiting(app, config)
        setup_compression(app, config)
        setup_security_headers(app)
    else:
        logger.info("Development mode: security headers, compression and rate limiting disabled")


def setup_request_logging(app: FastAPI, config: ServerConfig) -> None:
    app.add_middleware(
        RequestLoggingMiddleware,
        prefix=config.api_prefix,
        max_length=config.request_log_max_length,
    )


def setup_body_parsing(app: FastAPI, config: ServerConfig) -> None:
    app.add_middleware(BodyParsingMiddleware, limit=config.body_limit_bytes)


def setup_rate_limiting(app: FastAPI, config: ServerConfig) -> None:
    """Rate limit the API prefix per client address; health probes are not counted"""
    rate_limit_config = RateLimitConfig(
        window_seconds=config.rate_limit_window_seconds,
        max_requests=config.rate_limit_max_requests,
        message=config.rate_limit_message,
        path_prefix=config.api_prefix,
        exempt_paths=frozenset({f"{config.api_prefix}{HEALTH_PATH}"}),
    )
    app.add_middleware(RateLimitMiddleware, config=rate_limit_config)

    logger.info(
        f"Rate limiting configured: {rate_limit_config.max_requests} requests per "
        f"{rate_limit_config.window_seconds}s on {rate_limit_config.path_prefix}"
    )


def setup_compression(app: FastAPI, config: ServerConfig) -> None:
    app.add_middleware(GZipMiddleware, minimum_size=config.compression_min_size)


def setup_security_headers(app: FastAPI) -> None:
    app.add_middleware(SecurityHeadersMiddleware)
