"""
FastAPI dependencies for Toolgate.

Authentication, caller context and rate limiting for networked requests.
"""

from fastapi import Depends, Request

from ..auth.api_key import Principal
from ..auth.context import Context, require_context, resolve_from_headers
from ..runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    """Runtime attached to the application at startup."""
    return request.app.state.runtime


def get_request_id(request: Request) -> str:
    """Extract request ID from request state."""
    return getattr(request.state, "request_id", "unknown")


def authenticate(request: Request, runtime: Runtime = Depends(get_runtime)) -> Principal:
    """Validate the API key header and return the calling principal."""
    principal = runtime.authenticator.authenticate(request.headers.get(runtime.settings.api_key_header))
    request.state.principal = principal
    return principal


def get_context(request: Request, runtime: Runtime = Depends(get_runtime)) -> Context | None:
    """Caller context from the context headers, None when both are absent."""
    settings = runtime.settings
    return resolve_from_headers(request.headers, settings.context_type_header, settings.context_id_header)


def get_required_context(context: Context | None = Depends(get_context)) -> Context:
    return require_context(context)


async def enforce_rate_limit(
    principal: Principal = Depends(authenticate),
    context: Context | None = Depends(get_context),
    runtime: Runtime = Depends(get_runtime),
) -> Principal:
    """Count the request against the caller's bucket; raises when over the ceiling."""
    await runtime.rate_limiter.enforce(principal.rate_limit_key(context))
    return principal
