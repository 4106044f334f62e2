# =============================================================================
# File: tests/fakes/fake_transform_pipeline.py
# Description: Fake implementation of TransformPipeline for unit testing
# Pattern: Ports & Adapters - Fake/Stub adapter
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from starlette.requests import Request
from starlette.responses import Response

from portico.common.exceptions.exceptions import TransformPipelineError

FAKE_HMR_TAG = '<script type="module" src="/@fake/client"></script>'


@dataclass
class CallRecord:
    """Record of a method call for verification."""
    method: str
    args: tuple
    kwargs: Dict[str, Any]


class FakeTransformPipeline:
    """
    Fake implementation of TransformPipeline for unit testing.

    Assets are held in memory by path; transform_index_html() appends a
    marker tag so tests can tell the shell went through the pipeline.

    Usage:
        fake = FakeTransformPipeline()
        fake.set_asset("/src/main.tsx", "export default 1", "application/javascript")
        adapter = DevContentAdapter(config, fake)

        # Verify calls
        assert fake.was_called("transform_index_html")
    """

    def __init__(self):
        self.assets: Dict[str, Response] = {}
        self.started = False
        self.closed = False
        self.fixed_errors: List[BaseException] = []

        self._calls: List[CallRecord] = []
        self._should_fail: Dict[str, str] = {}

    # =========================================================================
    # Test Setup Methods
    # =========================================================================

    def set_asset(self, path: str, content: str, media_type: str = "text/plain") -> None:
        """Serve content for path through proxy()."""
        self.assets[path] = Response(content, media_type=media_type)

    def configure_failure(self, method: str, error_message: str) -> None:
        """Configure a method to fail with TransformPipelineError."""
        self._should_fail[method] = error_message

    # =========================================================================
    # Test Verification Methods
    # =========================================================================

    def was_called(self, method: str) -> bool:
        return any(c.method == method for c in self._calls)

    def get_call_count(self, method: str) -> int:
        return sum(1 for c in self._calls if c.method == method)

    def get_last_call(self, method: str) -> Optional[CallRecord]:
        calls = [c for c in self._calls if c.method == method]
        return calls[-1] if calls else None

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _record_call(self, method: str, *args, **kwargs) -> None:
        self._calls.append(CallRecord(method=method, args=args, kwargs=kwargs))

    def _check_failure(self, method: str) -> None:
        if method in self._should_fail:
            raise TransformPipelineError(self._should_fail[method])

    # =========================================================================
    # TransformPipeline Implementation
    # =========================================================================

    async def start(self) -> None:
        self._record_call("start")
        self._check_failure("start")
        self.started = True

    async def close(self) -> None:
        self._record_call("close")
        self.closed = True

    async def transform_index_html(self, url: str, html: str) -> str:
        self._record_call("transform_index_html", url, html)
        self._check_failure("transform_index_html")
        return html.replace("</head>", f"{FAKE_HMR_TAG}</head>", 1)

    async def proxy(self, request: Request) -> Response:
        self._record_call("proxy", request.url.path)
        self._check_failure("proxy")
        asset = self.assets.get(request.url.path)
        if asset is None:
            return Response("Not Found", status_code=404)
        return asset

    def fix_stacktrace(self, exc: BaseException) -> None:
        self._record_call("fix_stacktrace", exc)
        self.fixed_errors.append(exc)
