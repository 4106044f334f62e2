# =============================================================================
# File: portico/config/server_config.py
# Description: HTTP server, content delivery and lifecycle configuration
# =============================================================================

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import SettingsConfigDict

from portico.common.base.base_config import BaseConfig


class ServerConfig(BaseConfig):
    """
    Server configuration.

    No env prefix: PORT, HOST, ENVIRONMENT and friends are read verbatim,
    the same variables container platforms and process managers set.

    Usage:
        from portico.config.server_config import get_server_config

        config = get_server_config()
        config.port  # 5000 unless PORT is set
    """

    model_config = SettingsConfigDict(
        **BaseConfig.model_config,
    )

    # =========================================================================
    # Binding
    # =========================================================================

    port: int = Field(default=5000, ge=0, le=65535, description="Bind port (0 picks a free port)")
    host: str = Field(default="0.0.0.0", description="Bind address (all interfaces)")
    environment: Optional[str] = Field(
        default=None,
        description="Deployment environment; 'production' enables hardening middleware",
    )

    # =========================================================================
    # HTTP surface
    # =========================================================================

    api_prefix: str = Field(default="/api", description="Monitored path prefix (logged, rate limited)")
    route_modules: List[str] = Field(
        default_factory=list,
        description="Modules exposing an APIRouter named router, included under api_prefix",
    )

    # =========================================================================
    # Content delivery
    # =========================================================================

    static_dir: Path = Field(default=Path("dist/public"), description="Prebuilt client assets")
    client_dir: Path = Field(default=Path("client"), description="Client sources (development shell)")
    dev_server_url: str = Field(
        default="http://localhost:5173",
        description="Vite dev server used as the development transform pipeline",
    )
    dev_entry_script: str = Field(default="/src/main.tsx", description="Script tag rewritten for cache busting")
    dev_connect_timeout: float = Field(default=3.0, gt=0, description="Dev server probe timeout in seconds")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    shutdown_grace_period: float = Field(
        default=10.0,
        gt=0,
        description="Seconds allowed for connection draining before a forced exit",
    )

    # =========================================================================
    # Middleware
    # =========================================================================

    rate_limit_window_seconds: int = Field(default=15 * 60, gt=0)
    rate_limit_max_requests: int = Field(default=100, gt=0)
    rate_limit_message: str = Field(default="Too many requests from this IP, please try again later.")
    body_limit_bytes: int = Field(default=10 * 1024 * 1024, gt=0, description="JSON / urlencoded body cap")
    compression_min_size: int = Field(default=1024, ge=0)
    request_log_max_length: int = Field(default=80, ge=2)

    # =========================================================================
    # Database
    # =========================================================================

    database_url: Optional[SecretStr] = Field(default=None, description="PostgreSQL DSN")
    database_seed_file: Optional[Path] = Field(default=None, description="Idempotent seed SQL script")
    database_connect_timeout: float = Field(default=10.0, gt=0)

    @field_validator("api_prefix")
    @classmethod
    def validate_api_prefix(cls, v: str) -> str:
        v = "/" + v.strip("/")
        return v

    @property
    def is_production(self) -> bool:
        """Explicit production flag (ENVIRONMENT=production)"""
        return (self.environment or "").lower() == "production"


@lru_cache(maxsize=1)
def get_server_config() -> ServerConfig:
    """Get server configuration singleton"""
    return ServerConfig()


def reset_server_config() -> None:
    """Drop the cached configuration (tests, reloads)"""
    get_server_config.cache_clear()
