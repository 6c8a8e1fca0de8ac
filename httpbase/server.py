from __future__ import annotations

import argparse
import asyncio
import contextlib
import signal
import socket
import sys
from collections.abc import Iterator, Sequence
from enum import Enum
from typing import Any, Callable, TextIO

import structlog
import uvicorn

from httpbase.buildinfo import read_health_info
from httpbase.config import DEFAULT_SHUTDOWN_GRACE_SECONDS, Settings, get_settings
from httpbase.errors import ShutdownTimeoutError
from httpbase.main import load_openapi_document, route
from httpbase.observability.logging import configure_logging


SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ServerState(str, Enum):
    CREATED = "created"
    LISTENING = "listening"
    DRAINING = "draining"
    STOPPED = "stopped"


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to ServerLifecycle."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    def install_signal_handlers(self) -> None:
        # Older uvicorn releases install handlers from here instead of capture_signals.
        return


class ServerLifecycle:
    """Owns the listening socket and drives start, drain and stop.

    ``serve`` blocks until the stop event is set (SIGINT/SIGTERM or the caller), then
    gives in-flight requests ``grace_period`` seconds before raising
    ``ShutdownTimeoutError``.
    """

    def __init__(
        self,
        app: Callable[..., Any],
        *,
        host: str = "0.0.0.0",
        port: int = 8080,
        grace_period: float = DEFAULT_SHUTDOWN_GRACE_SECONDS,
    ) -> None:
        self.host = host
        self.port = port
        self.grace_period = grace_period
        self.state = ServerState.CREATED
        self._server = _EmbeddedServer(
            uvicorn.Config(
                app,
                host=host,
                port=port,
                lifespan="off",
                access_log=False,
                log_config=None,
                timeout_graceful_shutdown=None,
            )
        )
        self._sock: socket.socket | None = None
        self._listen_task: asyncio.Task[None] | None = None

    @property
    def started(self) -> bool:
        return self._server.started

    @property
    def address(self) -> tuple[str, int] | None:
        """Bound (host, port), or None before the socket is bound."""

        if self._sock is None or self._sock.fileno() == -1:
            return None
        host, port = self._sock.getsockname()[:2]
        return host, port

    def _bind(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        return socket.create_server((self.host, self.port), family=family)

    async def _listen(self) -> None:
        addr = f"{self.host}:{self.port}"
        try:
            self._sock = self._bind()
        except OSError as exc:
            structlog.get_logger("server").error("server error", addr=addr, error=str(exc))
            return

        structlog.get_logger("server").info("server started", addr=addr)
        try:
            await self._server.serve(sockets=[self._sock])
        except Exception as exc:
            structlog.get_logger("server").error("server error", addr=addr, error=str(exc))
        finally:
            # uvicorn skips its own shutdown when told to exit during startup.
            for server in getattr(self._server, "servers", []):
                server.close()
            self._sock.close()

    def start(self) -> None:
        """Spawn the listener task; binding happens there and never blocks the caller."""

        if self.state is not ServerState.CREATED:
            raise RuntimeError(f"cannot start server in state {self.state.value}")
        self._listen_task = asyncio.create_task(self._listen(), name="http-listener")
        self.state = ServerState.LISTENING

    async def shutdown(self) -> None:
        """Stop accepting connections and wait up to the grace period for the drain."""

        if self._listen_task is None:
            self.state = ServerState.STOPPED
            return

        self.state = ServerState.DRAINING
        structlog.get_logger("server").info("server shutting down", grace_period=self.grace_period)
        self._server.should_exit = True
        try:
            await asyncio.wait_for(asyncio.shield(self._listen_task), timeout=self.grace_period)
        except asyncio.TimeoutError:
            self._server.force_exit = True
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            structlog.get_logger("server").error("server shutdown timed out", grace_period=self.grace_period)
            raise ShutdownTimeoutError(self.grace_period) from None
        finally:
            self.state = ServerState.STOPPED

        structlog.get_logger("server").info("server stopped")

    async def serve(self, stop: asyncio.Event | None = None) -> None:
        """Run until ``stop`` is set or a shutdown signal arrives, then shut down."""

        stop = stop if stop is not None else asyncio.Event()
        loop = asyncio.get_running_loop()

        def handle_signal(sig: signal.Signals) -> None:
            structlog.get_logger("server").info("shutdown signal received", signal=sig.name)
            stop.set()

        installed: list[signal.Signals] = []
        previous: dict[signal.Signals, Any] = {}
        if sys.platform != "win32":
            for sig in SHUTDOWN_SIGNALS:
                loop.add_signal_handler(sig, handle_signal, sig)
                installed.append(sig)
        else:
            # Signal handlers run outside the loop on Windows; hop back onto it.
            def windows_handler(signum: int, frame: object) -> None:
                loop.call_soon_threadsafe(handle_signal, signal.Signals(signum))

            previous[signal.SIGINT] = signal.signal(signal.SIGINT, windows_handler)

        # Handlers stay installed until the drain completes.
        try:
            self.start()
            await stop.wait()
            await self.shutdown()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            for sig, handler in previous.items():
                signal.signal(sig, handler)


def _port(value: str) -> int:
    try:
        port = int(value, 10)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port {value!r}: parse error") from None
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"invalid port {value!r}: value out of range")
    return port


def parse_args(argv: Sequence[str], settings: Settings) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog=argv[0] if argv else "httpbase", description="httpbase HTTP service")
    parser.add_argument("--port", type=_port, default=settings.port, help="port for http api")
    return parser.parse_args(list(argv[1:]))


async def run(
    argv: Sequence[str],
    *,
    stream: TextIO | None = None,
    stop: asyncio.Event | None = None,
) -> None:
    """Start the service and block until it is told to stop.

    Flags are parsed before anything else; a malformed ``--port`` exits through
    argparse with status 2 before a socket is opened. A shutdown that overruns the
    grace period raises ``ShutdownTimeoutError``.
    """

    settings = get_settings()
    args = parse_args(argv, settings)
    if args.port != settings.port:
        settings = settings.model_copy(update={"port": args.port})

    configure_logging(settings.log_level, stream=stream)

    app = route(read_health_info(settings), load_openapi_document())
    lifecycle = ServerLifecycle(
        app,
        host=settings.host,
        port=settings.port,
        grace_period=settings.shutdown_grace_seconds,
    )
    await lifecycle.serve(stop)
