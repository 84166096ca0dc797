"""Middleware for HTTP error logging."""

import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from streamvault.core.logging import object_key_context

logger = logging.getLogger(__name__)


class HTTPErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to ensure all HTTP errors are logged.

    - 4xx responses: logged at WARN level
    - 5xx responses: logged at ERROR level

    Request bodies are never read here: uploads are streamed and must reach
    the route untouched. The object key is taken from the query string.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        object_key = request.query_params.get("id") or request.query_params.get("prefix")
        token = object_key_context.set(object_key)

        try:
            response = await call_next(request)
        finally:
            object_key_context.reset(token)

        duration_ms = (time.time() - start_time) * 1000

        if 400 <= response.status_code < 500:
            logger.warning(
                "Client error response",
                extra={
                    "http_status": response.status_code,
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": duration_ms,
                },
            )
        elif response.status_code >= 500:
            logger.error(
                "Server error response",
                extra={
                    "http_status": response.status_code,
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": duration_ms,
                },
            )

        return response
