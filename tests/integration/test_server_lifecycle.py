"""
End-to-end lifecycle tests against a real socket.

Each test assembles the application, runs LifecycleManager.run() on a free
port of 127.0.0.1 and talks to it over HTTP.
Run with: pytest tests/integration -v
"""
import asyncio
import logging
import os
import signal
import socket
from unittest.mock import MagicMock

import httpx
import pytest

from portico.common.exceptions.exceptions import DatabaseInitError
from portico.core.lifecycle import LifecycleManager, LifecycleState
from portico.core.startup import build_application


async def no_database():
    return False


async def database_down():
    raise DatabaseInitError("connection refused")


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def terminate():
    return MagicMock(name="terminate")


@pytest.fixture
def lifecycle(config, terminate):
    return LifecycleManager(config, terminate=terminate)


@pytest.fixture
def start_server(config, production, lifecycle):
    """Build the app, start serving in a task and wait until LISTENING."""

    async def _start(registrar=None, database_initializer=no_database):
        kwargs = {"lifecycle": lifecycle, "database_initializer": database_initializer}
        if registrar is not None:
            kwargs["registrar"] = registrar
        result = await build_application(config, production, **kwargs)
        assert result.ok

        task = asyncio.create_task(lifecycle.run(result.app))
        for _ in range(200):
            if lifecycle.is_listening or task.done():
                break
            await asyncio.sleep(0.025)
        assert lifecycle.is_listening, "server did not reach LISTENING"
        return task, f"http://127.0.0.1:{lifecycle.port}"

    return _start


# =============================================================================
# TESTS
# =============================================================================

class TestServeAndStop:

    async def test_health_while_listening_then_refused_after_stop(self, start_server, lifecycle, terminate):
        task, base_url = await start_server()

        async with httpx.AsyncClient(base_url=base_url) as client:
            response = await client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["state"] == "listening"

        lifecycle.request_shutdown("SIGTERM")
        exit_status = await asyncio.wait_for(task, timeout=5)

        assert exit_status == 0
        assert lifecycle.state is LifecycleState.STOPPED
        terminate.assert_not_called()

        async with httpx.AsyncClient(base_url=base_url) as client:
            with pytest.raises(httpx.ConnectError):
                await client.get("/api/health")

    async def test_shell_served_for_client_routes(self, start_server, lifecycle):
        task, base_url = await start_server()

        async with httpx.AsyncClient(base_url=base_url) as client:
            response = await client.get("/dashboard")

        lifecycle.request_shutdown("SIGTERM")
        await asyncio.wait_for(task, timeout=5)

        assert response.status_code == 200
        assert '<div id="root"></div>' in response.text

    async def test_two_signals_one_shutdown(self, start_server, lifecycle, terminate, caplog):
        caplog.set_level(logging.INFO, logger="portico.lifecycle")
        task, _ = await start_server()

        os.kill(os.getpid(), signal.SIGTERM)
        os.kill(os.getpid(), signal.SIGINT)
        exit_status = await asyncio.wait_for(task, timeout=5)

        assert exit_status == 0
        assert lifecycle.shutdown_reason == "SIGTERM"
        assert caplog.text.count("shutting down gracefully") == 1
        terminate.assert_not_called()

    async def test_shutdown_callbacks_run_after_drain(self, start_server, lifecycle):
        calls = []

        async def close_pool():
            calls.append("pool")

        lifecycle.on_shutdown(close_pool)
        lifecycle.on_shutdown(lambda: calls.append("cache"))
        task, _ = await start_server()

        lifecycle.request_shutdown("SIGTERM")
        await asyncio.wait_for(task, timeout=5)

        assert calls == ["pool", "cache"]

    async def test_database_failure_still_listening(self, start_server, lifecycle):
        task, base_url = await start_server(database_initializer=database_down)

        async with httpx.AsyncClient(base_url=base_url) as client:
            response = await client.get("/api/health")

        lifecycle.request_shutdown("SIGTERM")
        await asyncio.wait_for(task, timeout=5)

        assert response.status_code == 200
        assert response.json()["database"] == "degraded"


class TestForcedShutdown:

    async def test_hung_request_forces_exit_after_grace_period(self, start_server, lifecycle, terminate, caplog):
        lifecycle.shutdown_timer.grace_period = 0.5
        entered = asyncio.Event()
        release = asyncio.Event()

        def registrar(app):
            @app.get("/api/slow")
            async def slow():
                entered.set()
                await release.wait()
                return {"done": True}

            return app

        task, base_url = await start_server(registrar=registrar)
        client = httpx.AsyncClient(base_url=base_url, timeout=10)
        pending = asyncio.create_task(client.get("/api/slow"))
        await asyncio.wait_for(entered.wait(), timeout=5)

        lifecycle.request_shutdown("SIGTERM")
        exit_status = await asyncio.wait_for(task, timeout=5)

        terminate.assert_called_once_with(1)
        assert exit_status == 1
        assert "Forcing shutdown after timeout" in caplog.text

        release.set()
        pending.cancel()
        await asyncio.gather(pending, return_exceptions=True)
        await client.aclose()

    async def test_signal_during_startup_is_bounded_by_grace_period(self, lifecycle, terminate, caplog):
        lifecycle.shutdown_timer.grace_period = 0.3
        release = asyncio.Event()

        async def slow_startup_app(scope, receive, send):
            if scope["type"] == "lifespan":
                await receive()
                await release.wait()
                await send({"type": "lifespan.startup.complete"})
                await receive()
                await send({"type": "lifespan.shutdown.complete"})

        task = asyncio.create_task(lifecycle.run(slow_startup_app))
        await asyncio.sleep(0.1)
        assert lifecycle.state is LifecycleState.STARTING

        lifecycle.request_shutdown("SIGTERM")
        exit_status = await asyncio.wait_for(task, timeout=5)

        terminate.assert_called_once_with(1)
        assert exit_status == 1
        assert lifecycle.state is LifecycleState.STOPPED
        assert "Forcing shutdown after timeout" in caplog.text
        release.set()


class TestBindFailure:

    async def test_port_in_use_returns_one(self, config, production, terminate):
        # No SO_REUSEPORT on the holder, so the second bind must fail
        holder = socket.create_server(("127.0.0.1", 0))
        try:
            config.port = holder.getsockname()[1]
            lifecycle = LifecycleManager(config, terminate=terminate)
            result = await build_application(config, production, lifecycle=lifecycle, database_initializer=no_database)

            exit_status = await lifecycle.run(result.app)
        finally:
            holder.close()

        assert exit_status == 1
        assert lifecycle.state is LifecycleState.STOPPED
        terminate.assert_not_called()
