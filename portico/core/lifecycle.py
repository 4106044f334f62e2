# =============================================================================
# File: portico/core/lifecycle.py
# Description: Server socket ownership, signal handling, graceful/forced
#              shutdown and process-wide fault handling
# =============================================================================

"""
Lifecycle Manager

One instance per process, constructed at process entry. It owns:
- the listening socket (bound on all interfaces, closed exactly once)
- the LifecycleState machine:

      STARTING -> LISTENING -> SHUTTING_DOWN -> STOPPED

- SIGTERM / SIGINT handling (first signal starts the shutdown, later ones
  are ignored)
- the shutdown timer: graceful drain races a fixed grace period; the drain
  finishing first exits 0, the timer firing first terminates with 1
- the fault trap: exceptions escaping every frame and task failures nobody
  retrieved are fatal and terminate with 1

Other components register interest through on_shutdown() / on_fatal()
instead of installing process-wide hooks of their own.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import os
import signal
import socket
import sys
import threading
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Union

import uvicorn

from portico.config.server_config import ServerConfig

logger = logging.getLogger("portico.lifecycle")

HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGINT)

ShutdownCallback = Callable[[], Union[None, Awaitable[None]]]
FatalCallback = Callable[[Optional[BaseException]], None]


class LifecycleState(str, Enum):
    """Process lifecycle states"""
    STARTING = "starting"
    LISTENING = "listening"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class ShutdownTimer:
    """
    Single grace-period deadline.

    Armed exactly once, at entry to SHUTTING_DOWN. The returned future
    resolves when the grace period expires.
    """

    def __init__(self, grace_period: float):
        self.grace_period = grace_period
        self._handle: Optional[asyncio.TimerHandle] = None
        self._expired: Optional[asyncio.Future] = None

    @property
    def armed(self) -> bool:
        return self._expired is not None

    @property
    def expired(self) -> bool:
        return self._expired is not None and self._expired.done() and not self._expired.cancelled()

    @property
    def deadline(self) -> Optional[asyncio.Future]:
        """Future returned by arm(), None until armed"""
        return self._expired

    def arm(self, loop: asyncio.AbstractEventLoop) -> asyncio.Future:
        if self._expired is not None:
            raise RuntimeError("Shutdown timer is already armed")
        self._expired = loop.create_future()
        self._handle = loop.call_later(self.grace_period, self._expire)
        return self._expired

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        if self._expired is not None and not self._expired.done():
            self._expired.cancel()

    def _expire(self) -> None:
        if self._expired is not None and not self._expired.done():
            self._expired.set_result(True)


class ManagedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the LifecycleManager"""

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def supports_reuse_port() -> bool:
    return hasattr(socket, "SO_REUSEPORT") and sys.platform != "win32"


class LifecycleManager:
    """
    Owns the server socket and the process lifecycle.

    Usage:
        lifecycle = LifecycleManager(get_server_config())
        lifecycle.on_shutdown(close_pool)
        exit_status = asyncio.run(lifecycle.run(app))
        sys.exit(exit_status)
    """

    def __init__(
            self,
            config: ServerConfig,
            terminate: Callable[[int], Any] = os._exit,
            handled_signals: tuple = HANDLED_SIGNALS,
    ):
        """
        Args:
            config: Server configuration (host, port, grace period)
            terminate: Hard process exit used for fatal errors and the
                       forced shutdown path
            handled_signals: Signals that start the shutdown sequence
        """
        self.config = config
        self._terminate = terminate
        self._handled_signals = handled_signals

        self._state = LifecycleState.STARTING
        self._timer = ShutdownTimer(config.shutdown_grace_period)
        self._shutdown_callbacks: List[ShutdownCallback] = []
        self._fatal_callbacks: List[FatalCallback] = []

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._shutdown_requested: Optional[asyncio.Event] = None
        self._shutdown_reason: Optional[str] = None
        self._socket: Optional[socket.socket] = None
        self._server: Optional[ManagedServer] = None
        self._port: Optional[int] = None

        self._armed = False
        self._installed_signals: List[int] = []
        self._previous_excepthook = None
        self._previous_threading_excepthook = None
        self._fatal_in_progress = False
        self.exit_status: Optional[int] = None

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def is_listening(self) -> bool:
        return self._state is LifecycleState.LISTENING

    @property
    def port(self) -> Optional[int]:
        """Port actually bound (differs from config.port when it is 0)"""
        return self._port

    @property
    def shutdown_reason(self) -> Optional[str]:
        return self._shutdown_reason

    @property
    def shutdown_timer(self) -> ShutdownTimer:
        return self._timer

    # =========================================================================
    # Registration
    # =========================================================================

    def on_shutdown(self, callback: ShutdownCallback) -> ShutdownCallback:
        """Run callback once, after connections drained, before exiting"""
        self._shutdown_callbacks.append(callback)
        return callback

    def on_fatal(self, callback: FatalCallback) -> FatalCallback:
        """Run callback once before a fatal termination"""
        self._fatal_callbacks.append(callback)
        return callback

    # =========================================================================
    # Arming (signals + fault trap)
    # =========================================================================

    def arm(self, loop: asyncio.AbstractEventLoop) -> None:
        """Install signal handlers and the fault trap. Allowed once per instance."""
        if self._armed:
            raise RuntimeError("LifecycleManager is already armed")
        self._armed = True
        self._loop = loop
        if self._shutdown_requested is None:
            self._shutdown_requested = asyncio.Event()

        self._install_signal_handlers(loop)
        self._install_fault_trap(loop)

    def disarm(self) -> None:
        """Restore the hooks replaced by arm()"""
        if not self._armed:
            return
        loop = self._loop
        for sig in self._installed_signals:
            try:
                if loop is not None and not loop.is_closed():
                    loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError, ValueError):
                signal.signal(sig, signal.SIG_DFL)
        self._installed_signals.clear()

        if self._previous_excepthook is not None:
            sys.excepthook = self._previous_excepthook
        if self._previous_threading_excepthook is not None:
            threading.excepthook = self._previous_threading_excepthook
        if loop is not None and not loop.is_closed():
            loop.set_exception_handler(None)
        self._armed = False

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        if threading.current_thread() is not threading.main_thread():
            logger.warning("Not running in the main thread, signal handlers not installed")
            return

        for sig in self._handled_signals:
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                signal.signal(sig, lambda s, _frame: loop.call_soon_threadsafe(self._handle_signal, s))
            self._installed_signals.append(sig)

    def _install_fault_trap(self, loop: asyncio.AbstractEventLoop) -> None:
        self._previous_excepthook = sys.excepthook
        self._previous_threading_excepthook = threading.excepthook
        sys.excepthook = self._handle_uncaught_exception
        threading.excepthook = self._handle_thread_exception
        loop.set_exception_handler(self._handle_loop_exception)

    # =========================================================================
    # Fault trap
    # =========================================================================

    def _handle_uncaught_exception(self, exc_type, exc_value, exc_tb) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            self._previous_excepthook(exc_type, exc_value, exc_tb)
            return
        self.fatal(f"Uncaught Exception: {exc_value}", exc_value)

    def _handle_thread_exception(self, args: threading.ExceptHookArgs) -> None:
        if args.exc_type is SystemExit:
            return
        thread_name = args.thread.name if args.thread is not None else "unknown"
        self.fatal(f"Uncaught Exception in thread {thread_name}: {args.exc_value}", args.exc_value)

    def _handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exception = context.get("exception")
        future = context.get("future")
        message = context.get("message", "")

        if exception is not None and future is not None and message.endswith("exception was never retrieved"):
            self.fatal(f"Unhandled Rejection at: {future!r}, reason: {exception}", exception)
            return

        loop.default_exception_handler(context)

    def fatal(self, message: str, exc: Optional[BaseException] = None) -> None:
        """Log, notify on_fatal callbacks and terminate with status 1"""
        if self._fatal_in_progress:
            return
        self._fatal_in_progress = True

        logger.critical(message)
        if exc is not None:
            logger.critical("Fatal error cause", exc_info=(type(exc), exc, exc.__traceback__))

        for callback in self._fatal_callbacks:
            try:
                callback(exc)
            except Exception as callback_error:
                logger.error(f"Error in fatal callback {callback!r}: {callback_error}", exc_info=True)

        self._state = LifecycleState.STOPPED
        self._exit(1)

    # =========================================================================
    # Shutdown
    # =========================================================================

    def _handle_signal(self, sig: int) -> None:
        signal_name = signal.Signals(sig).name
        self.request_shutdown(signal_name)

    def request_shutdown(self, reason: str) -> bool:
        """
        Begin the shutdown sequence.

        Returns False when a shutdown is already running (or finished); the
        sequence is never restarted.
        """
        if self._state in (LifecycleState.SHUTTING_DOWN, LifecycleState.STOPPED):
            logger.warning(f"Received {reason} while {self._state.value}, ignoring")
            return False

        logger.info(f"Received {reason}, shutting down gracefully...", extra={"signal": reason})
        self._shutdown_reason = reason
        self._state = LifecycleState.SHUTTING_DOWN
        if self._shutdown_requested is None:
            self._shutdown_requested = asyncio.Event()
        self._shutdown_requested.set()
        # Without a loop the timer is armed when run() starts the drain
        if self._loop is not None and not self._timer.armed:
            self._timer.arm(self._loop)
        return True

    # =========================================================================
    # Serving
    # =========================================================================

    def bind(self) -> socket.socket:
        """Bind the listening socket on the configured host and port"""
        if self._socket is not None:
            raise RuntimeError("Server socket is already bound")

        family = socket.AF_INET6 if ":" in self.config.host else socket.AF_INET
        sock = socket.create_server(
            (self.config.host, self.config.port),
            family=family,
            reuse_port=supports_reuse_port(),
        )
        sock.set_inheritable(True)
        self._socket = sock
        self._port = sock.getsockname()[1]
        return sock

    def build_server(self, app: Any) -> ManagedServer:
        server_config = uvicorn.Config(
            app,
            log_config=None,
            access_log=False,
            lifespan="on",
            server_header=False,
            timeout_graceful_shutdown=None,
        )
        return ManagedServer(server_config)

    async def run(self, app: Any) -> int:
        """
        Serve app until shutdown.

        Returns the exit status of a clean run (0), or 1 when the server
        could not start. The forced-shutdown path terminates the process.
        """
        loop = asyncio.get_running_loop()
        if self._shutdown_requested is None:
            self._shutdown_requested = asyncio.Event()
        if not self._armed:
            self.arm(loop)

        try:
            try:
                sock = self.bind()
            except OSError as bind_error:
                logger.error(f"Failed to bind {self.config.host}:{self.config.port}: {bind_error}")
                self._state = LifecycleState.STOPPED
                return self._finish(1)

            self._server = self.build_server(app)
            serve_task = loop.create_task(self._server.serve(sockets=[sock]), name="portico-serve")

            if not await self._wait_started(serve_task):
                if self._timer.expired:
                    return await self._force_exit(serve_task)
                logger.error("Server failed to start")
                self._state = LifecycleState.STOPPED
                await self._settle(serve_task)
                return self._finish(1)

            if self._state is LifecycleState.STARTING:
                self._state = LifecycleState.LISTENING
            logger.info(f"serving on port {self._port}")

            shutdown_wait = loop.create_task(self._shutdown_requested.wait())
            await asyncio.wait({serve_task, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED)

            if serve_task.done() and not self._shutdown_requested.is_set():
                shutdown_wait.cancel()
                logger.error("Server stopped without a shutdown request")
                self._state = LifecycleState.STOPPED
                await self._settle(serve_task)
                return self._finish(1)

            return await self._shutdown(serve_task)

        finally:
            self._timer.cancel()
            self._close_socket()
            self.disarm()

    async def _wait_started(self, serve_task: asyncio.Task) -> bool:
        while not self._server.started:
            if serve_task.done() or self._timer.expired:
                return False
            await asyncio.sleep(0.05)
        return True

    async def _shutdown(self, serve_task: asyncio.Task) -> int:
        loop = asyncio.get_running_loop()
        self._server.should_exit = True
        expired = self._timer.deadline if self._timer.armed else self._timer.arm(loop)
        drain = loop.create_task(self._drain(serve_task), name="portico-drain")

        await asyncio.wait({drain, expired}, return_when=asyncio.FIRST_COMPLETED)

        if drain.done():
            self._timer.cancel()
            self._state = LifecycleState.STOPPED
            drain_error = drain.exception()
            if drain_error is not None:
                logger.error(f"Error while closing server: {drain_error}", exc_info=drain_error)
                return self._finish(1)
            logger.info("HTTP server closed.")
            return self._finish(0)

        return await self._force_exit(serve_task, drain)

    async def _force_exit(self, serve_task: asyncio.Task, drain: Optional[asyncio.Task] = None) -> int:
        logger.error("Forcing shutdown after timeout")
        self._state = LifecycleState.STOPPED
        self._exit(1)

        # Only reached when terminate() returns (embedded use, tests)
        self._server.force_exit = True
        for task in (drain, serve_task):
            if task is not None:
                task.cancel()
                await self._settle(task)
        return 1

    async def _drain(self, serve_task: asyncio.Task) -> None:
        await serve_task
        for callback in self._shutdown_callbacks:
            result = callback()
            if inspect.isawaitable(result):
                await result

    @staticmethod
    async def _settle(task: asyncio.Task) -> None:
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as task_error:
            logger.error(f"{task.get_name()} failed: {task_error}", exc_info=task_error)

    def _close_socket(self) -> None:
        # uvicorn closes the socket on a normal shutdown
        if self._socket is not None and self._socket.fileno() != -1:
            self._socket.close()

    def _finish(self, status: int) -> int:
        self.exit_status = status
        return status

    def _exit(self, status: int) -> None:
        self.exit_status = status
        for handler in logging.getLogger().handlers:
            with contextlib.suppress(Exception):
                handler.flush()
        self._terminate(status)
