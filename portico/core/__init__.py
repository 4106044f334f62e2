# portico/core/__init__.py
"""
Portico Core Module
Application assembly: middleware, lifecycle, health and startup
"""

# =============================================================================
# VERSION LOADING (Dynamic from pyproject.toml)
# =============================================================================
from portico import __version__, __description__, __author__

from portico.core.app_state import AppState, get_start_time

__all__ = [
    "__version__",
    "__description__",
    "__author__",
    "AppState",
    "get_start_time"
]
