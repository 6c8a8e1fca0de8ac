from __future__ import annotations

from importlib.resources import files
from typing import Any, Callable

from starlette.routing import Mount, Route, Router

from httpbase.api.debug import debug_app
from httpbase.api.health import health_endpoint
from httpbase.api.openapi import OpenAPIDocument
from httpbase.models.schemas import HealthInfo
from httpbase.observability.middleware import AccessLogMiddleware, RecoveryMiddleware


def load_openapi_document() -> bytes:
    """Read the OpenAPI document shipped with the package."""

    return files("httpbase.api").joinpath("openapi.yaml").read_bytes()


def route(health_info: HealthInfo, openapi_document: bytes) -> Callable[..., Any]:
    """Build the ASGI app for every route of the service.

    This is the single place routes are declared. Recovery wraps the access log so it
    also contains exceptions raised while logging.
    """

    router = Router(
        routes=[
            Route("/health", health_endpoint(health_info), methods=["GET"]),
            Route("/openapi.yaml", OpenAPIDocument(openapi_document), methods=["GET"]),
            Mount("/debug", app=debug_app()),
        ]
    )

    app: Callable[..., Any] = AccessLogMiddleware(router)
    app = RecoveryMiddleware(app)
    return app
