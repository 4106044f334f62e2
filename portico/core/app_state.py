# =============================================================================
# File: portico/core/app_state.py
# Description: Application state definition and global state management
# =============================================================================

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional

from portico.config.server_config import ServerConfig
from portico.core.mode import ModeSelection

if TYPE_CHECKING:
    from portico.core.lifecycle import LifecycleManager
    from portico.delivery.base import ContentDeliveryAdapter


# =============================================================================
# APP STATE TYPE DEFINITION
# =============================================================================
class AppState:
    """Type definition for FastAPI app.state with proper type hints"""

    def __init__(self, config: ServerConfig, mode: ModeSelection,
                 lifecycle: Optional[LifecycleManager] = None):
        self.config = config

        # Decided once at process entry, never recomputed
        self.mode = mode

        # Owner of the LifecycleState; read-only for everyone else
        self.lifecycle = lifecycle

        # Content delivery
        self.content_adapter: Optional[ContentDeliveryAdapter] = None

        # Startup bookkeeping
        self.database_status: str = "pending"
        self.degraded: List[str] = []


# =============================================================================
# GLOBAL STATE
# =============================================================================
_START_TIME = datetime.now(timezone.utc)


def get_start_time() -> datetime:
    """Get application start time"""
    return _START_TIME
