# =============================================================================
# File: portico/delivery/dev_adapter.py
# Description: Development content delivery through the transform pipeline
# =============================================================================

from __future__ import annotations

import logging
import secrets
from pathlib import Path

import aiofiles
from starlette.requests import Request
from starlette.responses import HTMLResponse, Response

from portico.config.server_config import ServerConfig
from portico.core.fastapi_types import FastAPI
from portico.delivery.base import ContentDeliveryAdapter, TransformPipeline

logger = logging.getLogger("portico.delivery.dev")

SHELL_TEMPLATE = "index.html"
CATCH_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def cache_busting_token() -> str:
    return secrets.token_urlsafe(16)


def rewrite_entry_script(template: str, entry_script: str, token: str) -> str:
    """Append ?v=<token> to the first src="<entry_script>" attribute"""
    return template.replace(
        f'src="{entry_script}"',
        f'src="{entry_script}?v={token}"',
        1,
    )


class DevContentAdapter(ContentDeliveryAdapter):
    """
    Serves the client through the development transform pipeline.

    HTML navigations (and any non-GET request) get the application shell
    rendered from source on every request; module and asset requests are
    proxied to the pipeline, falling back to the shell when the pipeline
    has nothing for the path.
    """

    name = "development"

    def __init__(self, config: ServerConfig, pipeline: TransformPipeline):
        self.config = config
        self.pipeline = pipeline
        self.template_path = Path(config.client_dir) / SHELL_TEMPLATE

    async def setup(self) -> None:
        await self.pipeline.start()

    async def close(self) -> None:
        await self.pipeline.close()

    def attach(self, app: FastAPI) -> None:
        app.router.add_route(
            "/{full_path:path}",
            self.handle,
            methods=CATCH_ALL_METHODS,
            include_in_schema=False,
        )
        logger.info(f"Development shell served from {self.template_path}")

    async def handle(self, request: Request) -> Response:
        if self.wants_shell(request):
            return await self.render_shell(request)

        response = await self.pipeline.proxy(request)
        if response.status_code == 404:
            return await self.render_shell(request)
        return response

    @staticmethod
    def wants_shell(request: Request) -> bool:
        if request.method not in ("GET", "HEAD"):
            return True
        return "text/html" in request.headers.get("accept", "")

    async def render_shell(self, request: Request) -> HTMLResponse:
        url = request.url.path
        if request.url.query:
            url += f"?{request.url.query}"

        try:
            async with aiofiles.open(self.template_path, "r", encoding="utf-8") as f:
                template = await f.read()
            template = rewrite_entry_script(template, self.config.dev_entry_script, cache_busting_token())
            page = await self.pipeline.transform_index_html(url, template)
        except Exception as e:
            self.pipeline.fix_stacktrace(e)
            logger.error(f"Failed to render {url} through the transform pipeline: {e}")
            raise

        return HTMLResponse(page, status_code=200)
