# =============================================================================
# File: portico/core/routes.py
# Description: Route registration for the FastAPI application
# =============================================================================

import importlib
import logging
from typing import Awaitable, Callable, Union

from fastapi import APIRouter

from portico.core.fastapi_types import FastAPI

logger = logging.getLogger("portico.routes")

# Attaches business routes and hands back the server handle to bind
RouteRegistrar = Callable[[FastAPI], Union[FastAPI, Awaitable[FastAPI]]]


def register_routes(app: FastAPI) -> FastAPI:
    """Default route registrar: include routers from the configured modules"""

    config = app.state.config
    for module_path in config.route_modules:
        register_router_module(app, module_path, prefix=config.api_prefix)

    return app


def register_router_module(app: FastAPI, module_path: str, prefix: str = "") -> bool:
    """
    Include module_path.router under prefix.

    Missing modules are logged and skipped; a module without a router
    attribute is a configuration error.
    """
    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        logger.warning(f"Router module {module_path} not available: {e}")
        return False

    router = getattr(module, "router", None)
    if not isinstance(router, APIRouter):
        raise TypeError(f"{module_path} does not define an APIRouter named 'router'")

    app.include_router(router, prefix=prefix)
    logger.info(f"Router {module_path} registered under {prefix or '/'}")
    return True
