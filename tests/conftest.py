"""
Portico - Test Configuration

Shared fixtures: configuration pointing at temporary client directories,
mode selections and an in-process HTTP client factory.
"""
import logging
from pathlib import Path

import httpx
import pytest

from portico.config.server_config import ServerConfig, reset_server_config
from portico.core.mode import ModeSelection, ServerMode

SHELL_HTML = (
    "<!doctype html><html><head><title>Portico</title></head>"
    '<body><div id="root"></div><script type="module" src="/src/main.tsx"></script></body></html>'
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep host environment signals out of config and mode selection."""
    for name in ("PORT", "HOST", "ENVIRONMENT", "REPL_ID", "DATABASE_URL", "DATABASE_SEED_FILE", "API_PREFIX"):
        monkeypatch.delenv(name, raising=False)
    reset_server_config()
    yield
    reset_server_config()


@pytest.fixture
def static_dir(tmp_path) -> Path:
    """Client build output with a shell and one asset."""
    directory = tmp_path / "dist" / "public"
    (directory / "assets").mkdir(parents=True)
    (directory / "index.html").write_text(SHELL_HTML, encoding="utf-8")
    (directory / "assets" / "app.js").write_text("console.log('portico')", encoding="utf-8")
    return directory


@pytest.fixture
def client_dir(tmp_path) -> Path:
    """Client sources with the development shell template."""
    directory = tmp_path / "client"
    directory.mkdir()
    (directory / "index.html").write_text(SHELL_HTML, encoding="utf-8")
    return directory


@pytest.fixture
def config(static_dir, client_dir) -> ServerConfig:
    """Test configuration; port 0 picks a free port."""
    return ServerConfig(
        _env_file=None,
        port=0,
        host="127.0.0.1",
        static_dir=static_dir,
        client_dir=client_dir,
        shutdown_grace_period=2.0,
    )


@pytest.fixture
def production() -> ModeSelection:
    return ModeSelection(mode=ServerMode.PRODUCTION, dev_pipeline=False)


@pytest.fixture
def development() -> ModeSelection:
    return ModeSelection(mode=ServerMode.DEVELOPMENT, dev_pipeline=True)


@pytest.fixture
def make_client():
    """Build an httpx client that talks to an ASGI app in-process."""

    def _make(app, raise_app_exceptions: bool = True) -> httpx.AsyncClient:
        transport = httpx.ASGITransport(app=app, raise_app_exceptions=raise_app_exceptions)
        return httpx.AsyncClient(transport=transport, base_url="http://testserver")

    return _make


@pytest.fixture
def request_log(caplog):
    """Captured lines of the request logger."""
    caplog.set_level(logging.INFO, logger="portico.request")

    def _lines():
        return [r.getMessage() for r in caplog.records if r.name == "portico.request"]

    return _lines
