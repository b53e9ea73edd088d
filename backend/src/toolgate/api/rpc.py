"""JSON-RPC over HTTP.

One request per POST. The endpoint is stateless: every request gets a fresh
lenient session, so ``tools/list`` and ``tools/call`` work without a prior
``initialize``. The caller context comes from the context headers.
"""

import asyncio
import json

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from ..auth.context import resolve_from_headers
from ..core import exceptions as exc
from ..core.exceptions import RateLimitExceededError, ToolgateException
from ..core.logging import get_logger
from ..mcp.dispatcher import error_from_exception
from ..runtime import Runtime
from ..schemas.mcp import rpc_error
from .dependencies import get_runtime

logger = get_logger(__name__)
router = APIRouter(tags=["rpc"])

DISCONNECT_POLL_SECONDS = 0.25
CLIENT_CLOSED_REQUEST = 499


@router.post("/rpc", summary="JSON-RPC endpoint", description="Handle one JSON-RPC request or notification.")
async def handle_rpc(request: Request, runtime: Runtime = Depends(get_runtime)) -> Response:
    body = await request.body()
    try:
        message = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JSONResponse(rpc_error(None, exc.PARSE_ERROR, "Parse error"))
    if not isinstance(message, dict):
        return JSONResponse(rpc_error(None, exc.INVALID_REQUEST, "Invalid request"))

    request_id = message.get("id")
    settings = runtime.settings
    try:
        principal = runtime.authenticator.authenticate(request.headers.get(settings.api_key_header))
        context = resolve_from_headers(request.headers, settings.context_type_header, settings.context_id_header)
        limit = await runtime.rate_limiter.enforce(principal.rate_limit_key(context))
    except RateLimitExceededError as e:
        return JSONResponse(error_from_exception(request_id, e), status_code=e.status_code, headers=e.headers)
    except ToolgateException as e:
        return JSONResponse(error_from_exception(request_id, e), status_code=e.status_code)

    dispatcher = runtime.dispatcher
    task = asyncio.create_task(dispatcher.handle(dispatcher.new_session(strict=False), message, context))
    while True:
        done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
        if done:
            break
        if await request.is_disconnected():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info(
                "Client disconnected, request cancelled",
                extra={"method": message.get("method"), "request_id": getattr(request.state, "request_id", None)},
            )
            return Response(status_code=CLIENT_CLOSED_REQUEST)

    headers = limit.to_headers() if runtime.rate_limiter.enabled else None
    response = task.result()
    if response is None:
        return Response(status_code=204, headers=headers)
    return JSONResponse(response, headers=headers)
