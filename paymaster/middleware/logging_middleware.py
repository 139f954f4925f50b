"""
HTTP request logging middleware.

Logs every request with method, path, status code, duration and, for JSON-RPC
calls, the RPC method the dispatcher resolved.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.stdlib.get_logger("http")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log HTTP requests with timing, status and RPC method."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["x-request-id"] = request_id
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 1)
            # Set by the JSON-RPC dispatcher; request.state is shared through the scope.
            rpc_method = getattr(request.state, "rpc_method", None)
            rpc_error = getattr(request.state, "rpc_error", None)

            if status_code >= 500:
                log = logger.error
            elif status_code >= 400 or rpc_error:
                log = logger.warning
            else:
                log = logger.info

            log(
                "http_request",
                method=request.method,
                path=request.url.path,
                rpc_method=rpc_method,
                rpc_error=rpc_error,
                status=status_code,
                duration_ms=duration_ms,
                client=request.client.host if request.client else None,
            )
