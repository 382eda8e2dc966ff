import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from studio.core.logging_config import actor_id_ctx_var, request_id_ctx_var

logger = logging.getLogger("studio.request")

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 64
QUIET_PATHS = frozenset({"/api/v1/health"})


def resolve_request_id(raw: str | None) -> str:
    """Reuse a caller-supplied id (trimmed) or mint a new one."""
    candidate = (raw or "").strip()[:MAX_REQUEST_ID_LENGTH]
    return candidate or uuid.uuid4().hex


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One access line per request, tagged with the request id."""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        request_token = request_id_ctx_var.set(request_id)
        actor_token = actor_id_ctx_var.set(None)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            if request.url.path not in QUIET_PATHS:
                level = logging.WARNING if response.status_code >= 500 else logging.INFO
                logger.log(
                    level,
                    "request",
                    extra={
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": response.status_code,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                    },
                )
            return response
        finally:
            actor_id_ctx_var.reset(actor_token)
            request_id_ctx_var.reset(request_token)
