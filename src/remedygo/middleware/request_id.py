"""Request ID middleware.

Device clients send their own ``X-Request-Id`` so a beacon and its retries
can be matched to client-side logs. A caller-supplied id is kept only when it
is a short token; anything else is replaced with a fresh UUID before it
reaches the logs.
"""

import re
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-Id"

_TOKEN = re.compile(r"[A-Za-z0-9._:-]{1,64}")


def resolve_request_id(inbound: str | None) -> str:
    if inbound and _TOKEN.fullmatch(inbound):
        return inbound
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind the request id, method and path into the log context and echo the id."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
