"""Request correlation IDs and access logging."""

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def get_request_id() -> str:
    """Correlation ID of the request being handled, empty outside a request."""
    return request_id_var.get()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with a correlation ID and log its status and duration.

    The ID is taken from the ``X-Request-ID`` header when the client sends
    one and echoed back on the response. For streamed responses the
    duration covers time to the first byte.
    """

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self.HEADER_NAME) or uuid.uuid4().hex[:8]
        token = request_id_var.set(request_id)
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"[{request_id}] {request.method} {request.url.path} - "
                f"Error ({duration_ms:.2f}ms): {e}"
            )
            raise
        finally:
            request_id_var.reset(token)

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"[{request_id}] {request.method} {request.url.path} - "
            f"{response.status_code} ({duration_ms:.2f}ms)"
        )
        response.headers[self.HEADER_NAME] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        return response
