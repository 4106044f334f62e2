# =============================================================================
# File: portico/core/health.py
# Description: Health check endpoint for external probes
# =============================================================================

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from starlette import status

from portico import __version__
from portico.core.app_state import get_start_time
from portico.core.fastapi_types import FastAPI
from portico.core.lifecycle import LifecycleState
from portico.core.request_logging import RecordingJSONResponse

logger = logging.getLogger("portico.health")

HEALTH_PATH = "/health"


def register_health_endpoints(app: FastAPI, prefix: str = "/api") -> None:
    """Register the health check under the API prefix"""

    @app.get(f"{prefix}{HEALTH_PATH}", tags=["System"])
    async def health_check() -> RecordingJSONResponse:
        """200 while the server is listening, 503 otherwise"""
        health_data = get_health_status(app)
        status_code = (
            status.HTTP_200_OK if health_data["status"] == "ok"
            else status.HTTP_503_SERVICE_UNAVAILABLE
        )
        return RecordingJSONResponse(health_data, status_code=status_code)


def get_lifecycle_state(app: FastAPI) -> LifecycleState:
    lifecycle = getattr(app.state, "lifecycle", None)
    if lifecycle is None:
        return LifecycleState.STARTING
    return lifecycle.state


def get_health_status(app: FastAPI) -> Dict[str, Any]:
    """Health payload; status is "ok" only in the LISTENING state"""
    state = get_lifecycle_state(app)
    adapter = getattr(app.state, "content_adapter", None)
    mode = getattr(app.state, "mode", None)
    now = datetime.now(timezone.utc)

    return {
        "status": "ok" if state is LifecycleState.LISTENING else "unavailable",
        "state": state.value,
        "version": __version__,
        "mode": mode.mode.value if mode is not None else None,
        "delivery": adapter.name if adapter is not None else None,
        "database": getattr(app.state, "database_status", "unknown"),
        "timestamp": now.isoformat(),
        "uptime_seconds": int((now - get_start_time()).total_seconds()),
    }
