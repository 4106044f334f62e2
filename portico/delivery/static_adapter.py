# =============================================================================
# File: portico/delivery/static_adapter.py
# Description: Production content delivery - prebuilt assets with SPA fallback
# =============================================================================

from __future__ import annotations

import logging
from pathlib import Path

from starlette.exceptions import HTTPException
from starlette.responses import FileResponse, Response
from starlette.staticfiles import StaticFiles
from starlette.types import Scope

from portico.common.exceptions.exceptions import StaticAssetsError
from portico.config.server_config import ServerConfig
from portico.core.fastapi_types import FastAPI
from portico.delivery.base import ContentDeliveryAdapter

logger = logging.getLogger("portico.delivery.static")

SHELL_DOCUMENT = "index.html"


class ShellFallbackStaticFiles(StaticFiles):
    """StaticFiles that answers unknown paths, for any method, with the application shell"""

    def __init__(self, *, directory: Path, shell: Path):
        super().__init__(directory=directory, html=True)
        self.shell = shell

    async def get_response(self, path: str, scope: Scope) -> Response:
        try:
            return await super().get_response(path, scope)
        except HTTPException as exc:
            # 405: StaticFiles only serves GET and HEAD
            if exc.status_code not in (404, 405):
                raise
            return FileResponse(self.shell, media_type="text/html")


class StaticContentAdapter(ContentDeliveryAdapter):
    """
    Serves the client build output.

    Files under static_dir are served as-is; any other path gets
    index.html with status 200 so the client-side router can take over.
    """

    name = "static"

    def __init__(self, config: ServerConfig):
        self.config = config
        self.directory = Path(config.static_dir).resolve()
        self.shell = self.directory / SHELL_DOCUMENT

    async def setup(self) -> None:
        if not self.directory.is_dir():
            raise StaticAssetsError(
                f"Could not find the build directory: {self.directory}, "
                f"make sure to build the client first",
                step="content_delivery",
            )
        if not self.shell.is_file():
            logger.warning(f"Build directory has no {SHELL_DOCUMENT}; unmatched paths will fail")

    def attach(self, app: FastAPI) -> None:
        app.mount(
            "/",
            ShellFallbackStaticFiles(directory=self.directory, shell=self.shell),
            name="static",
        )
        logger.info(f"Serving static files from {self.directory}")
