from __future__ import annotations

from typing import Awaitable, Callable

from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from httpbase.models.schemas import HealthInfo


def health_endpoint(info: HealthInfo) -> Callable[[Request], Awaitable[Response]]:
    """Return a handler serving ``info`` as JSON.

    The body is encoded once here; every request gets the same bytes.
    """

    try:
        body = info.model_dump_json(by_alias=True).encode("utf-8")
    except ValueError as exc:
        error_text = f"{exc}\n"

        async def health_failed(request: Request) -> Response:
            return PlainTextResponse(error_text, status_code=500)

        return health_failed

    async def health(request: Request) -> Response:
        return Response(content=body, status_code=200, media_type="application/json")

    return health
