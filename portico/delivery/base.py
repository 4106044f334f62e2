# =============================================================================
# File: portico/delivery/base.py
# Description: Content delivery capability and the transform pipeline port
# =============================================================================

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

from starlette.requests import Request
from starlette.responses import Response

from portico.core.fastapi_types import FastAPI


class ContentDeliveryAdapter(ABC):
    """
    Resolves content for any request path no business route claimed.

    Implementations:
        - StaticContentAdapter (prebuilt assets + application shell fallback)
        - DevContentAdapter (live transform pipeline)

    Exactly one adapter is attached per process; it is chosen at startup
    by create_content_adapter() and never swapped afterwards.
    """

    name: str = "abstract"

    @abstractmethod
    async def setup(self) -> None:
        """
        Prepare the adapter before it is attached.

        Raises:
            StartupError / TransformPipelineError when the adapter cannot serve
        """
        pass

    @abstractmethod
    def attach(self, app: FastAPI) -> None:
        """Register the catch-all; must run after all business routes"""
        pass

    async def close(self) -> None:
        """Release resources held by the adapter"""
        return None


@runtime_checkable
class TransformPipeline(Protocol):
    """
    Port: development transform pipeline

    Implemented by: ViteTransformPipeline (portico/delivery/vite_pipeline.py)

    Source transformation and hot module replacement live behind this
    interface; the lifecycle layer only starts it, stops it and asks it to
    serve content.
    """

    async def start(self) -> None:
        """Connect; raises TransformPipelineError when unavailable"""
        ...

    async def close(self) -> None:
        ...

    async def transform_index_html(self, url: str, html: str) -> str:
        """Post-process the application shell for the given request URL"""
        ...

    async def proxy(self, request: Request) -> Response:
        """Serve a module / asset request through the pipeline"""
        ...

    def fix_stacktrace(self, exc: BaseException) -> None:
        """Attach pipeline context to an error raised while rendering"""
        ...
