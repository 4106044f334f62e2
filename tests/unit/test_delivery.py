"""
Tests for content delivery: static shell fallback, the development adapter
and adapter selection with fallback.
"""
import pytest
from fastapi import FastAPI

from portico.common.exceptions.exceptions import StaticAssetsError, TransformPipelineError
from portico.core.exceptions import ErrorHandlingMiddleware
from portico.delivery.dev_adapter import DevContentAdapter, rewrite_entry_script
from portico.delivery.factory import create_content_adapter
from portico.delivery.static_adapter import StaticContentAdapter
from portico.delivery.vite_pipeline import inject_into_head
from tests.fakes.fake_transform_pipeline import FAKE_HMR_TAG, FakeTransformPipeline


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def pipeline():
    return FakeTransformPipeline()


@pytest.fixture
async def static_app(config):
    adapter = StaticContentAdapter(config)
    await adapter.setup()
    app = FastAPI()

    @app.get("/api/ping")
    async def ping():
        return {"pong": True}

    adapter.attach(app)
    return app


@pytest.fixture
async def dev_app(config, pipeline):
    adapter = DevContentAdapter(config, pipeline)
    await adapter.setup()
    app = FastAPI()
    app.add_middleware(ErrorHandlingMiddleware)
    adapter.attach(app)
    return app


# =============================================================================
# STATIC ADAPTER TESTS
# =============================================================================

class TestStaticContentAdapter:

    async def test_existing_asset_is_served(self, static_app, make_client):
        async with make_client(static_app) as client:
            response = await client.get("/assets/app.js")

        assert response.status_code == 200
        assert response.text == "console.log('portico')"

    async def test_unknown_path_gets_shell_with_200(self, static_app, make_client):
        async with make_client(static_app) as client:
            response = await client.get("/dashboard")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert '<div id="root"></div>' in response.text

    async def test_nested_client_route_gets_shell(self, static_app, make_client):
        async with make_client(static_app) as client:
            response = await client.get("/settings/profile/42")

        assert response.status_code == 200
        assert "<title>Portico</title>" in response.text

    async def test_non_get_client_route_gets_shell(self, static_app, make_client):
        async with make_client(static_app) as client:
            response = await client.post("/dashboard", json={"draft": True})

        assert response.status_code == 200
        assert '<div id="root"></div>' in response.text

    async def test_business_routes_take_precedence(self, static_app, make_client):
        async with make_client(static_app) as client:
            response = await client.get("/api/ping")

        assert response.json() == {"pong": True}

    async def test_missing_build_directory_fails_setup(self, config, tmp_path):
        config.static_dir = tmp_path / "not-built"

        with pytest.raises(StaticAssetsError, match="make sure to build the client first"):
            await StaticContentAdapter(config).setup()


# =============================================================================
# DEVELOPMENT ADAPTER TESTS
# =============================================================================

class TestRewriteEntryScript:

    def test_appends_token_and_keeps_quote(self):
        html = '<script type="module" src="/src/main.tsx"></script>'

        assert rewrite_entry_script(html, "/src/main.tsx", "abc") == \
            '<script type="module" src="/src/main.tsx?v=abc"></script>'

    def test_only_first_occurrence(self):
        html = 'src="/src/main.tsx" src="/src/main.tsx"'

        assert rewrite_entry_script(html, "/src/main.tsx", "t") == 'src="/src/main.tsx?v=t" src="/src/main.tsx"'

    def test_template_without_entry_is_unchanged(self):
        assert rewrite_entry_script("<html></html>", "/src/main.tsx", "t") == "<html></html>"


class TestInjectIntoHead:

    def test_injects_after_head_tag(self):
        assert inject_into_head("<html><head><title>x</title></head></html>", "<s/>") == \
            "<html><head>\n<s/><title>x</title></head></html>"

    def test_prepends_without_head(self):
        assert inject_into_head("<p>x</p>", "<s/>") == "<s/>\n<p>x</p>"


class TestDevContentAdapter:

    async def test_html_navigation_renders_shell(self, dev_app, pipeline, make_client):
        async with make_client(dev_app) as client:
            response = await client.get("/dashboard?tab=1", headers={"accept": "text/html"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert FAKE_HMR_TAG in response.text
        assert 'src="/src/main.tsx?v=' in response.text
        assert pipeline.get_last_call("transform_index_html").args[0] == "/dashboard?tab=1"

    async def test_cache_busting_token_changes_per_render(self, dev_app, make_client):
        async with make_client(dev_app) as client:
            first = await client.get("/", headers={"accept": "text/html"})
            second = await client.get("/", headers={"accept": "text/html"})

        assert first.text != second.text

    async def test_module_request_is_proxied(self, dev_app, pipeline, make_client):
        pipeline.set_asset("/src/main.tsx", "export default 1", "application/javascript")

        async with make_client(dev_app) as client:
            response = await client.get("/src/main.tsx", headers={"accept": "*/*"})

        assert response.text == "export default 1"
        assert pipeline.was_called("proxy")

    async def test_unknown_module_falls_back_to_shell(self, dev_app, make_client):
        async with make_client(dev_app) as client:
            response = await client.get("/unknown.js", headers={"accept": "*/*"})

        assert response.status_code == 200
        assert FAKE_HMR_TAG in response.text

    async def test_render_error_goes_through_fix_stacktrace(self, dev_app, pipeline, make_client):
        pipeline.configure_failure("transform_index_html", "plugin crashed")

        async with make_client(dev_app, raise_app_exceptions=False) as client:
            response = await client.get("/", headers={"accept": "text/html"})

        assert response.status_code == 500
        assert response.json() == {"message": "plugin crashed"}
        assert len(pipeline.fixed_errors) == 1
        assert isinstance(pipeline.fixed_errors[0], TransformPipelineError)

    async def test_close_closes_pipeline(self, config, pipeline):
        adapter = DevContentAdapter(config, pipeline)
        await adapter.setup()
        await adapter.close()

        assert pipeline.closed


# =============================================================================
# FACTORY TESTS
# =============================================================================

class TestCreateContentAdapter:

    async def test_production_uses_static(self, config, production, pipeline):
        adapter = await create_content_adapter(production, config, pipeline_factory=lambda _: pipeline)

        assert isinstance(adapter, StaticContentAdapter)
        assert not pipeline.was_called("start")

    async def test_development_uses_pipeline(self, config, development, pipeline):
        adapter = await create_content_adapter(development, config, pipeline_factory=lambda _: pipeline)

        assert isinstance(adapter, DevContentAdapter)
        assert pipeline.started

    async def test_pipeline_failure_falls_back_to_static(self, config, development, pipeline, caplog):
        pipeline.configure_failure("start", "dev server down")

        adapter = await create_content_adapter(development, config, pipeline_factory=lambda _: pipeline)

        assert isinstance(adapter, StaticContentAdapter)
        assert pipeline.closed
        assert "Failed to setup Vite development server" in caplog.text

    async def test_pipeline_construction_failure_falls_back_to_static(self, config, development):
        def broken_factory(_config):
            raise TransformPipelineError("no dev tooling installed")

        adapter = await create_content_adapter(development, config, pipeline_factory=broken_factory)

        assert isinstance(adapter, StaticContentAdapter)

    async def test_unreachable_vite_server_falls_back_to_static(self, config, development, caplog):
        config.dev_server_url = "http://127.0.0.1:1"
        config.dev_connect_timeout = 1.0

        adapter = await create_content_adapter(development, config)

        assert isinstance(adapter, StaticContentAdapter)
        assert "Failed to setup Vite development server" in caplog.text
