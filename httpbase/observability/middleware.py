from __future__ import annotations

import traceback
from time import perf_counter
from typing import Any, Callable

import structlog
from starlette.datastructures import Headers
from starlette.requests import ClientDisconnect
from starlette.responses import PlainTextResponse

from httpbase.errors import AbortHandler
from httpbase.observability.metrics import get_metrics


# Exceptions that abandon a response on purpose and are not reported.
ABORT_EXCEPTIONS: tuple[type[BaseException], ...] = (AbortHandler, ClientDisconnect)

# Upper bound on the traceback text attached to a panic log event.
STACK_LIMIT = 8192


def format_duration(seconds: float) -> str:
    """Render ``seconds`` as a compact duration string (``1.5ms``, ``2m3.1s``, ``1h0m0s``)."""

    ns = int(round(seconds * 1e9))
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    ns = abs(ns)
    if ns < 1_000:
        return f"{sign}{ns}ns"
    if ns < 1_000_000:
        return f"{sign}{_fixed(ns, 3)}µs"
    if ns < 1_000_000_000:
        return f"{sign}{_fixed(ns, 6)}ms"

    hours, rem = divmod(ns, 3_600 * 10**9)
    minutes, rem = divmod(rem, 60 * 10**9)
    out = sign
    if hours:
        out += f"{hours}h"
    if hours or minutes:
        out += f"{minutes}m"
    return f"{out}{_fixed(rem, 9)}s"


def _fixed(value: int, digits: int) -> str:
    whole, frac = divmod(value, 10**digits)
    frac_str = f"{frac:0{digits}d}".rstrip("0")
    return f"{whole}.{frac_str}" if frac_str else str(whole)


def _client_addr(scope: dict[str, Any]) -> str:
    client = scope.get("client")
    if not client:
        return ""
    host, port = client[0], client[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _query(scope: dict[str, Any]) -> str:
    return scope.get("query_string", b"").decode("latin-1")


class ResponseObserver:
    """Wraps an ASGI ``send`` and records the committed status and body bytes.

    The first ``http.response.start`` wins; later start messages are still forwarded so
    the server can reject them, but they do not change ``status``.
    """

    def __init__(self, send: Callable[..., Any]) -> None:
        self._send = send
        self.status: int = 0
        self.bytes_written: int = 0
        self.headers = Headers()

    @property
    def committed(self) -> bool:
        return self.status != 0

    async def __call__(self, message: dict[str, Any]) -> None:
        message_type = message.get("type")
        if message_type == "http.response.start":
            if self.status == 0:
                self.status = int(message.get("status", 0))
                self.headers = Headers(raw=list(message.get("headers", [])))
        elif message_type == "http.response.body":
            self.bytes_written += len(message.get("body", b""))

        await self._send(message)


class AccessLogMiddleware:
    """Emits one ``accessed`` event per request and feeds the HTTP counters."""

    def __init__(self, app: Callable[..., Any]) -> None:
        self.app = app
        # Avoid self-observing the counters endpoint.
        self._excluded_metric_paths = {"/debug/vars"}

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        start = perf_counter()
        observer = ResponseObserver(send)
        # Status recovery will send when an exception unwinds before anything was committed.
        fallback_status = 0

        try:
            await self.app(scope, receive, observer)
        except ABORT_EXCEPTIONS:
            raise
        except Exception:
            fallback_status = 500
            raise
        finally:
            elapsed = perf_counter() - start
            status = observer.status or fallback_status
            path = scope.get("path", "")

            if path not in self._excluded_metric_paths:
                get_metrics().observe_http_request(
                    elapsed_ms=elapsed * 1000.0,
                    status=status,
                    num_bytes=observer.bytes_written,
                )

            structlog.get_logger("access").info(
                "accessed",
                latency=format_duration(elapsed),
                method=scope.get("method", ""),
                path=path,
                query=_query(scope),
                ip=_client_addr(scope),
                status=status,
                bytes=observer.bytes_written,
            )


class RecoveryMiddleware:
    """Contains exceptions raised anywhere below it.

    Must be the outermost middleware so it sees exceptions from every inner layer. A
    500 carrying the exception text is sent only when nothing was committed yet.
    """

    def __init__(self, app: Callable[..., Any]) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        observer = ResponseObserver(send)
        try:
            await self.app(scope, receive, observer)
        except ABORT_EXCEPTIONS:
            return
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            stack = traceback.format_exc()
            if len(stack) > STACK_LIMIT:
                stack = stack[-STACK_LIMIT:]

            get_metrics().observe_panic()
            structlog.get_logger("recovery").error(
                "panic!",
                error=error,
                error_type=type(exc).__name__,
                stack=stack,
                method=scope.get("method", ""),
                path=scope.get("path", ""),
                query=_query(scope),
                ip=_client_addr(scope),
            )

            if not observer.committed:
                response = PlainTextResponse(
                    f"{error}\n",
                    status_code=500,
                    headers={"X-Content-Type-Options": "nosniff"},
                )
                await response(scope, receive, send)
