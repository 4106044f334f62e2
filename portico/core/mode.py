# =============================================================================
# File: portico/core/mode.py
# Description: Server mode selection (development pipeline vs static serving)
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping

# Ports the hosting platform exposes publicly; binding one means a deployed process
PRODUCTION_PORTS = frozenset({"5000", "8080"})

# Present only inside the hosted development workspace
DEV_HOST_ENV = "REPL_ID"


class ServerMode(str, Enum):
    """Process-wide serving mode, decided once at startup"""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


@dataclass(frozen=True)
class ModeSelection:
    """Outcome of mode selection.

    dev_pipeline is a separate fact from mode: development tooling may be
    available while the run itself is not a development run.
    """
    mode: ServerMode
    dev_pipeline: bool

    @property
    def is_production(self) -> bool:
        return self.mode is ServerMode.PRODUCTION


def select_server_mode(environ: Mapping[str, str]) -> ModeSelection:
    """
    Derive the serving mode from environment signals.

    Production wins when any of these hold:
    - ENVIRONMENT is "production"
    - PORT is one of the publicly exposed ports
    - the development host identifier is absent

    With no signals at all the result is production (static serving).
    """
    environment = (environ.get("ENVIRONMENT") or "").strip().lower()
    port = (environ.get("PORT") or "").strip()
    dev_host = (environ.get(DEV_HOST_ENV) or "").strip()

    is_production = (
        environment == "production"
        or port in PRODUCTION_PORTS
        or not dev_host
    )

    if is_production:
        return ModeSelection(mode=ServerMode.PRODUCTION, dev_pipeline=False)

    # Secondary marker: an unset environment counts as a development run
    dev_run = environment in ("", "development")
    return ModeSelection(mode=ServerMode.DEVELOPMENT, dev_pipeline=dev_run)
