"""Toolgate - FastAPI Application

This module creates and configures the FastAPI application serving the
JSON-RPC endpoint, the plugin management API and the health probes.
"""

from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .api.health import router as health_router
from .api.plugins import router as plugins_router
from .api.rpc import router as rpc_router
from .core.config import Settings, get_settings_instance
from .core.exceptions import RateLimitExceededError, ToolgateException
from .core.logging import get_logger, setup_logging
from .core.middleware import RequestIDMiddleware, RequestSizeLimitMiddleware, TimingMiddleware
from .core.response import generate_error_id
from .runtime import Runtime, build_runtime

logger = get_logger(__name__)


def get_request_context(request: Request) -> dict[str, Any]:
    """Extract relevant context from request for error logging."""
    return {
        "method": request.method,
        "path": request.url.path,
        "query_params": dict(request.query_params),
        "client": request.client.host if request.client else None,
        "request_id": getattr(request.state, "request_id", None),
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging()
    runtime: Runtime = app.state.runtime
    settings = runtime.settings

    logger.info("Starting Toolgate...")
    logger.info(f"Version: {settings.version}")
    logger.info(f"Environment: {settings.environment}")

    await runtime.start()
    logger.info("Database initialized successfully")
    try:
        yield
    finally:
        await runtime.close()
        logger.info("Toolgate shutdown complete")


def create_app(
    settings: Settings | None = None,
    runtime: Runtime | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``http_transport`` replaces the outbound HTTP transport, which lets tests
    stand in for plugin endpoints and built-in tool APIs.
    """
    settings = settings or (runtime.settings if runtime else get_settings_instance())
    runtime = runtime or build_runtime(settings, http_transport=http_transport)

    app = FastAPI(
        title=settings.app_name,
        description="Multi-tenant tool registry and JSON-RPC dispatch server",
        version=settings.version,
        debug=settings.debug,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    setup_middleware(app, settings)
    setup_exception_handlers(app, settings)
    setup_routes(app, settings)

    logger.info("Toolgate FastAPI application created successfully")
    return app


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register middleware. The last one added runs first."""
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=settings.max_request_bytes)
    app.add_middleware(TimingMiddleware)
    app.add_middleware(RequestIDMiddleware)


def setup_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """Map exceptions raised by management routes to the error envelope."""

    @app.exception_handler(ToolgateException)
    async def toolgate_exception_handler(request: Request, exc: ToolgateException):
        error_id = generate_error_id() if exc.status_code >= 500 else None

        if exc.status_code >= 500:
            logger.error(
                "Toolgate server error",
                extra={
                    "error_id": error_id,
                    "error_code": exc.error_code,
                    "error_message": exc.message,
                    "details": exc.details,
                    "request_context": get_request_context(request),
                },
            )
        else:
            logger.warning(
                "Toolgate client error",
                extra={
                    "error_code": exc.error_code,
                    "error_message": exc.message,
                    "request_context": get_request_context(request),
                },
            )

        error_response: dict[str, Any] = {
            "error": {
                "code": exc.error_code,
                "message": exc.message,
                "details": exc.details,
            }
        }
        if error_id:
            error_response["error"]["error_id"] = error_id

        headers = exc.headers if isinstance(exc, RateLimitExceededError) else None
        return JSONResponse(status_code=exc.status_code, content=error_response, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "details": {"errors": jsonable_errors(exc)},
                }
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": {"code": f"HTTP_{exc.status_code}", "message": exc.detail, "details": {}}},
            headers=getattr(exc, "headers", None) or None,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        error_id = generate_error_id()
        logger.error(
            "Unhandled exception",
            extra={
                "error_id": error_id,
                "exception_type": type(exc).__name__,
                "request_context": get_request_context(request),
            },
            exc_info=settings.debug,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "INTERNAL_SERVER_ERROR",
                    "message": "Internal server error",
                    "error_id": error_id,
                    "details": {},
                }
            },
        )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Validation errors without the raw input, which may be large."""
    return [{"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")} for error in exc.errors()]


def setup_routes(app: FastAPI, settings: Settings) -> None:
    """Configure application routes."""
    app.include_router(health_router)
    app.include_router(rpc_router)
    app.include_router(plugins_router, prefix=settings.api_v1_prefix)
