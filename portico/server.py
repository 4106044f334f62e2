# portico/server.py
# =============================================================================
# File: portico/server.py
# Description: Process entry point: mode selection, assembly and serving
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv

from portico.config.logging_config import setup_logging
from portico.config.server_config import ServerConfig, get_server_config
from portico.core import __version__
from portico.core.lifecycle import LifecycleManager
from portico.core.mode import ModeSelection, select_server_mode
from portico.core.routes import RouteRegistrar, register_routes
from portico.core.startup import DatabaseInitializer, build_application

logger = logging.getLogger("portico.server")


async def serve(
        config: ServerConfig,
        selection: ModeSelection,
        lifecycle: LifecycleManager,
        registrar: RouteRegistrar = register_routes,
        database_initializer: Optional[DatabaseInitializer] = None,
) -> int:
    """Assemble the application and serve it until shutdown; returns the exit status"""
    result = await build_application(
        config,
        selection,
        lifecycle=lifecycle,
        registrar=registrar,
        database_initializer=database_initializer,
    )
    if not result.ok:
        logger.critical(f"Server failed to start: {result.error}")
        return 1

    return await lifecycle.run(result.app)


def main() -> None:
    # .env must reach os.environ before the mode is selected
    load_dotenv()

    config = get_server_config()
    setup_logging(
        service_name="portico",
        enable_json=config.is_production or None,
    )

    selection = select_server_mode(os.environ)
    logger.info(f"Portico v{__version__} starting in {selection.mode.value} mode")

    lifecycle = LifecycleManager(config)
    exit_status = asyncio.run(serve(config, selection, lifecycle))
    sys.exit(exit_status)


# =============================================================================
# Development entry point
# =============================================================================
if __name__ == "__main__":
    main()
