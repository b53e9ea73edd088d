"""
HTTP middleware for Toolgate.

Request tracking, timing and a request body size guard.
"""

import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .logging import get_logger

logger = get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request ID to every request and echo it back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class TimingMiddleware(BaseHTTPMiddleware):
    """Log each request with its duration and add an ``X-Response-Time`` header."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        logger.info(
            "Request processed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration * 1000, 2),
                "request_id": getattr(request.state, "request_id", "unknown"),
            },
        )
        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject request bodies larger than ``max_bytes`` with a 413."""

    def __init__(self, app, *, max_bytes: int, path_prefix: str | None = None) -> None:
        super().__init__(app)
        self.max_bytes = int(max_bytes)
        self.path_prefix = path_prefix.rstrip("/") if path_prefix else None

    def _too_large(self, detail: str) -> JSONResponse:
        return JSONResponse(
            status_code=413,
            content={
                "error": {
                    "code": "REQUEST_TOO_LARGE",
                    "message": detail,
                    "details": {"max_bytes": self.max_bytes},
                }
            },
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self.path_prefix and not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        content_length = request.headers.get("content-length")
        if content_length is not None:
            try:
                if int(content_length) > self.max_bytes:
                    return self._too_large(f"Content-Length exceeds limit of {self.max_bytes} bytes")
            except ValueError:
                pass

        body = await request.body()
        if len(body) > self.max_bytes:
            return self._too_large(f"Payload exceeds limit of {self.max_bytes} bytes")

        # BaseHTTPMiddleware hands the cached body to downstream handlers
        return await call_next(request)
