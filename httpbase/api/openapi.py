from __future__ import annotations

from typing import Any, Callable

import structlog
from starlette.requests import ClientDisconnect
from starlette.responses import Response


class OpenAPIDocument:
    """ASGI app serving a fixed OpenAPI document as plain text with permissive CORS."""

    def __init__(self, document: bytes) -> None:
        self.document = bytes(document)

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        # The header is set explicitly so Starlette does not append a charset.
        response = Response(
            content=self.document,
            status_code=200,
            headers={
                "Content-Type": "text/plain",
                "Access-Control-Allow-Origin": "*",
            },
        )
        try:
            await response(scope, receive, send)
        except (OSError, ClientDisconnect) as exc:
            structlog.get_logger("openapi").error("failed to write openapi", error=str(exc))
