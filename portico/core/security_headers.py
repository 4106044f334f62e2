# =============================================================================
# File: portico/core/security_headers.py
# Description: Security response headers for production traffic
# =============================================================================

"""
Security Headers Middleware

Adds the hardening header set to every response:
- Content-Security-Policy (self-origin scripts and styles, inline styles,
  images from self/data:/https:)
- Cross-Origin-Opener-Policy / Cross-Origin-Resource-Policy
- Strict-Transport-Security
- X-Content-Type-Options, X-Frame-Options, Referrer-Policy and friends

Installed only in production mode.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp


@dataclass
class SecurityHeadersConfig:
    """Configuration for security headers."""

    csp_directives: Dict[str, str] = field(default_factory=lambda: {
        "default-src": "'self'",
        "base-uri": "'self'",
        "font-src": "'self' https: data:",
        "form-action": "'self'",
        "frame-ancestors": "'self'",
        "img-src": "'self' data: https:",
        "object-src": "'none'",
        "script-src": "'self'",
        "script-src-attr": "'none'",
        "style-src": "'self' 'unsafe-inline'",
        "upgrade-insecure-requests": "",
    })

    hsts_max_age: int = 31536000  # 1 year
    hsts_include_subdomains: bool = True

    frame_options: str = "SAMEORIGIN"
    referrer_policy: str = "no-referrer"

    # Headers stripped from every response
    remove_headers: tuple = ("X-Powered-By", "Server")


def get_security_headers(config: Optional[SecurityHeadersConfig] = None) -> Dict[str, str]:
    """
    Generate the security headers dictionary.

    Usage:
        headers = get_security_headers()
        response.headers.update(headers)
    """
    cfg = config or SecurityHeadersConfig()

    csp_value = ";".join(
        f"{directive} {value}".strip()
        for directive, value in cfg.csp_directives.items()
    )

    hsts_value = f"max-age={cfg.hsts_max_age}"
    if cfg.hsts_include_subdomains:
        hsts_value += "; includeSubDomains"

    return {
        "Content-Security-Policy": csp_value,
        "Cross-Origin-Opener-Policy": "same-origin",
        "Cross-Origin-Resource-Policy": "same-origin",
        "Origin-Agent-Cluster": "?1",
        "Referrer-Policy": cfg.referrer_policy,
        "Strict-Transport-Security": hsts_value,
        "X-Content-Type-Options": "nosniff",
        "X-DNS-Prefetch-Control": "off",
        "X-Download-Options": "noopen",
        "X-Frame-Options": cfg.frame_options,
        "X-Permitted-Cross-Domain-Policies": "none",
        "X-XSS-Protection": "0",
    }


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers to all responses.

    Usage:
        app.add_middleware(SecurityHeadersMiddleware)
    """

    def __init__(self, app: ASGIApp, config: Optional[SecurityHeadersConfig] = None):
        super().__init__(app)
        self.config = config or SecurityHeadersConfig()
        self._headers = get_security_headers(self.config)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)

        for name in self.config.remove_headers:
            if name in response.headers:
                del response.headers[name]

        for key, value in self._headers.items():
            # Handlers may set a stricter value themselves
            if key not in response.headers:
                response.headers[key] = value

        return response
