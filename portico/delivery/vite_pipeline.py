# =============================================================================
# File: portico/delivery/vite_pipeline.py
# Description: Development transform pipeline backed by a Vite dev server
# =============================================================================

"""
ViteTransformPipeline

Talks to a running Vite dev server over HTTP:
- start() probes /@vite/client; an unreachable or misbehaving server raises
  TransformPipelineError so the caller can fall back to static serving
- proxy() forwards module and asset requests (/src/..., /@vite/...,
  /node_modules/...) and returns Vite's transformed output
- transform_index_html() injects the HMR client (and the React refresh
  preamble when the React plugin is active) into the application shell

The HMR websocket is served by Vite itself; browsers connect to it directly.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import httpx
from starlette.requests import Request
from starlette.responses import Response

from portico.common.exceptions.exceptions import TransformPipelineError

logger = logging.getLogger("portico.delivery.vite")

VITE_CLIENT_PATH = "/@vite/client"
REACT_REFRESH_PATH = "/@react-refresh"

REACT_REFRESH_PREAMBLE = """<script type="module">
import RefreshRuntime from "/@react-refresh"
RefreshRuntime.injectIntoGlobalHook(window)
window.$RefreshReg$ = () => {}
window.$RefreshSig$ = () => (type) => type
window.__vite_plugin_react_preamble_installed__ = true
</script>"""

VITE_CLIENT_TAG = f'<script type="module" src="{VITE_CLIENT_PATH}"></script>'

# Not forwarded in either direction
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
    "host",
    "content-length",
    "content-encoding",
})


def inject_into_head(html: str, tags: str) -> str:
    """Insert tags right after <head>, or prepend them when there is no head"""
    lower = html.lower()
    head_start = lower.find("<head")
    if head_start != -1:
        head_end = html.find(">", head_start)
        if head_end != -1:
            return html[:head_end + 1] + "\n" + tags + html[head_end + 1:]
    return tags + "\n" + html


class ViteTransformPipeline:
    """Vite dev server connection implementing the TransformPipeline port"""

    def __init__(
            self,
            base_url: str,
            root: Path,
            timeout: float = 3.0,
            client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.root = Path(root)
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._react_refresh = False
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)

        try:
            response = await self._client.get(VITE_CLIENT_PATH)
        except httpx.HTTPError as e:
            raise TransformPipelineError(f"Vite dev server at {self.base_url} is unreachable: {e}") from e

        if response.status_code != 200:
            raise TransformPipelineError(
                f"Vite dev server at {self.base_url} answered {response.status_code} for {VITE_CLIENT_PATH}"
            )

        try:
            refresh = await self._client.get(REACT_REFRESH_PATH)
            self._react_refresh = refresh.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"React refresh runtime not available: {e}")
            self._react_refresh = False

        self._started = True
        logger.info(f"Connected to Vite dev server at {self.base_url} (react refresh={self._react_refresh})")

    async def close(self) -> None:
        self._started = False
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def transform_index_html(self, url: str, html: str) -> str:
        if not self._started:
            raise TransformPipelineError("Transform pipeline is not started")

        tags = [VITE_CLIENT_TAG]
        if self._react_refresh:
            tags.insert(0, REACT_REFRESH_PREAMBLE)
        return inject_into_head(html, "\n".join(tags))

    async def proxy(self, request: Request) -> Response:
        if not self._started:
            raise TransformPipelineError("Transform pipeline is not started")

        headers = {
            name: value for name, value in request.headers.items()
            if name.lower() not in HOP_BY_HOP_HEADERS
        }
        body = await request.body()

        try:
            upstream = await self._client.request(
                request.method,
                request.url.path,
                params=request.url.query or None,
                headers=headers,
                content=body or None,
            )
        except httpx.HTTPError as e:
            raise TransformPipelineError(f"Vite dev server request failed for {request.url.path}: {e}") from e

        response_headers = {
            name: value for name, value in upstream.headers.items()
            if name.lower() not in HOP_BY_HOP_HEADERS
        }
        return Response(
            content=upstream.content,
            status_code=upstream.status_code,
            headers=response_headers,
        )

    def fix_stacktrace(self, exc: BaseException) -> None:
        exc.add_note(f"[vite] dev server {self.base_url}, client root {self.root}")
