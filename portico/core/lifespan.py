# =============================================================================
# File: portico/core/lifespan.py
# Description: Application lifespan management (startup/shutdown)
# =============================================================================

import asyncio
import logging
from contextlib import asynccontextmanager

from portico.core import __version__
from portico.core.fastapi_types import FastAPI

logger = logging.getLogger("portico.lifespan")

ADAPTER_CLOSE_TIMEOUT = 5.0


# =============================================================================
# LIFESPAN (Startup/Shutdown)
# =============================================================================
@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    """
    ASGI lifespan.

    Everything that can fail is done by the startup routine before the
    server binds; the lifespan only announces readiness and releases the
    content adapter once connections have drained.
    """
    state = app_instance.state
    adapter = getattr(state, "content_adapter", None)

    logger.info(
        f"Portico v{__version__} ready "
        f"(mode={state.mode.mode.value}, delivery={adapter.name if adapter else 'none'})"
    )
    if state.degraded:
        logger.warning(f"Running degraded: {', '.join(state.degraded)}")

    try:
        yield
    finally:
        logger.info(f"Portico v{__version__} shutting down...")
        if adapter is not None:
            try:
                async with asyncio.timeout(ADAPTER_CLOSE_TIMEOUT):
                    await adapter.close()
                logger.info(f"Content adapter '{adapter.name}' closed")
            except TimeoutError:
                logger.error(f"Content adapter close timed out after {ADAPTER_CLOSE_TIMEOUT}s, continuing...")
            except Exception as e:
                logger.error(f"Error closing content adapter: {e}", exc_info=True)
