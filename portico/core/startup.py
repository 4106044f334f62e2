# =============================================================================
# File: portico/core/startup.py
# Description: Ordered assembly of the server before the port is bound
# =============================================================================

"""
Startup routine

    1. create the FastAPI application and its state
    2. middleware pipeline
    3. database initializer (awaited; failure degrades, never aborts)
    4. health endpoint + route registrar (returns the server handle)
    5. terminal error handlers
    6. content delivery adapter (catch-all, always last)

The result is handed to LifecycleManager.run(); nothing here binds a port
or installs process-wide hooks.
"""

import functools
import inspect
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from portico import __version__
from portico.common.exceptions.exceptions import StartupError
from portico.config.server_config import ServerConfig
from portico.core.app_state import AppState
from portico.core.exceptions import setup_exception_handlers
from portico.core.fastapi_types import FastAPI
from portico.core.health import register_health_endpoints
from portico.core.lifecycle import LifecycleManager
from portico.core.lifespan import lifespan
from portico.core.middleware import setup_middleware
from portico.core.mode import ModeSelection
from portico.core.request_logging import RecordingJSONResponse
from portico.core.routes import RouteRegistrar, register_routes
from portico.delivery.factory import PipelineFactory, create_content_adapter
from portico.infra.database import initialize_database

logger = logging.getLogger("portico.startup")

# Returns False when there was nothing to initialize
DatabaseInitializer = Callable[[], Awaitable[Optional[bool]]]


@dataclass
class StartupResult:
    """Server handle on success, StartupError otherwise"""
    app: Optional[FastAPI] = None
    error: Optional[StartupError] = None
    degraded: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.app is not None and self.error is None


def create_app(config: ServerConfig, selection: ModeSelection,
               lifecycle: Optional[LifecycleManager] = None) -> FastAPI:
    """Bare application with state; no middleware or routes yet"""
    prefix = config.api_prefix
    app = FastAPI(
        title="Portico",
        version=__version__,
        lifespan=lifespan,
        default_response_class=RecordingJSONResponse,
        docs_url=f"{prefix}/docs",
        redoc_url=None,
        openapi_url=f"{prefix}/openapi.json",
    )
    app.state = AppState(config, selection, lifecycle)
    return app


async def run_database_initializer(app: FastAPI, initializer: DatabaseInitializer) -> None:
    state = app.state
    try:
        initialized = await initializer()
    except Exception as db_error:
        logger.error(f"Database initialization failed, continuing anyway: {db_error}", exc_info=True)
        state.database_status = "degraded"
        state.degraded.append("database")
        return

    state.database_status = "skipped" if initialized is False else "ready"


async def run_route_registrar(app: FastAPI, registrar: RouteRegistrar) -> FastAPI:
    handle = registrar(app)
    if inspect.isawaitable(handle):
        handle = await handle
    if handle is None:
        raise StartupError("Route registrar returned no server handle", step="routes")
    return handle


async def build_application(
        config: ServerConfig,
        selection: ModeSelection,
        lifecycle: Optional[LifecycleManager] = None,
        registrar: RouteRegistrar = register_routes,
        database_initializer: Optional[DatabaseInitializer] = None,
        pipeline_factory: Optional[PipelineFactory] = None,
) -> StartupResult:
    """
    Assemble the server in a fixed order.

    Args:
        config: Server configuration
        selection: Mode decided once at process entry
        lifecycle: Manager exposed to handlers through app.state (health)
        registrar: Attaches business routes, returns the server handle
        database_initializer: Defaults to initialize_database(config)
        pipeline_factory: Overrides the development transform pipeline
    """
    if database_initializer is None:
        database_initializer = functools.partial(initialize_database, config)

    logger.info(f"Assembling server (mode={selection.mode.value}, dev_pipeline={selection.dev_pipeline})")
    app = create_app(config, selection, lifecycle)
    setup_middleware(app, config, selection)

    await run_database_initializer(app, database_initializer)

    try:
        register_health_endpoints(app, config.api_prefix)
        handle = await run_route_registrar(app, registrar)

        setup_exception_handlers(handle)

        adapter = await create_content_adapter(selection, config, pipeline_factory=pipeline_factory)
        adapter.attach(handle)
        app.state.content_adapter = adapter

    except StartupError as startup_error:
        logger.error(f"Startup failed: {startup_error}")
        return StartupResult(error=startup_error, degraded=list(app.state.degraded))
    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        error = StartupError(str(e), step="routes")
        error.__cause__ = e
        return StartupResult(error=error, degraded=list(app.state.degraded))

    logger.info(f"Server assembled, content delivery: {adapter.name}")
    return StartupResult(app=handle, degraded=list(app.state.degraded))
