"""JSON-RPC dispatcher for the tool protocol.

Handles ``initialize``, ``tools/list``, ``tools/call`` and ``ping`` for one
protocol session. ``tools/call`` resolves its target once, either a built-in
tool or a registered plugin, and only then runs it:

1. a built-in name runs directly, no context needed;
2. anything else must parse as an FQN;
3. the FQN's embedded context must equal the caller's context;
4. the caller must hold an enabled grant for that version;
5. arguments are validated against the input schema;
6. the plugin endpoint is invoked through the proxy;
7. the result is validated against the output schema, if any.

Every failure becomes a JSON-RPC error object. Upstream faults collapse to a
single "Tool invocation failed" error whose detail stays in the server log.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError

from ..auth.context import Context, require_context
from ..core import exceptions as exc
from ..core.config import Settings
from ..core.exceptions import ForbiddenError, NotInitializedError, ToolgateException, UpstreamFailure
from ..core.logging import get_logger
from ..core.response import generate_error_id
from ..plugins.fqn import parse_fqn
from ..plugins.proxy import InvocationProxy
from ..plugins.registry import PluginRegistry
from ..plugins.schema_validation import validate_arguments, validate_result
from ..schemas.mcp import JSONRPC_VERSION, JsonRpcRequest, ToolCallParams, rpc_error, rpc_result
from ..schemas.plugin import PluginMetadata
from ..tools.builtin import BuiltinTool, BuiltinToolset

logger = get_logger(__name__)

# Methods that require an initialized session
SESSION_METHODS = frozenset({"tools/list", "tools/call", "ping"})


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"


@dataclass
class ProtocolSession:
    """Per-connection protocol state.

    A strict session rejects session methods until ``initialize`` succeeds; a
    lenient one initializes itself on first use.
    """

    strict: bool = False
    state: SessionState = SessionState.UNINITIALIZED
    client_info: dict[str, Any] = field(default_factory=dict)

    @property
    def initialized(self) -> bool:
        return self.state is SessionState.INITIALIZED


@dataclass(frozen=True)
class BuiltinTarget:
    tool: BuiltinTool


@dataclass(frozen=True)
class RegisteredTarget:
    metadata: PluginMetadata


CallTarget = BuiltinTarget | RegisteredTarget


def error_from_exception(request_id: Any, error: ToolgateException) -> dict[str, Any]:
    """JSON-RPC error object for a raised ``ToolgateException``.

    Upstream faults and server errors are reduced to a generic message plus an
    error id; the detail is logged under that id.
    """
    if isinstance(error, UpstreamFailure):
        error_id = generate_error_id()
        logger.error(
            "Tool invocation failed",
            extra={"error_id": error_id, "error_code": error.error_code, "detail": error.message},
        )
        return rpc_error(request_id, error.rpc_code, error.public_message, {"error_id": error_id})
    if not error.is_client_error:
        error_id = generate_error_id()
        logger.error("Internal error", extra={"error_id": error_id, "detail": error.message})
        return rpc_error(request_id, exc.INTERNAL_ERROR, "Internal error", {"error_id": error_id})

    data: dict[str, Any] = {"error_code": error.error_code}
    if error.details:
        data["details"] = error.details
    return rpc_error(request_id, error.rpc_code, error.message, data)


def ensure_invocation_allowed(caller: Context, owner: Context) -> None:
    """A caller may only invoke tools named under its own context.

    Enablement makes a plugin visible to other contexts; it never lets them
    call it under the owner's name.
    """
    if caller != owner:
        raise ForbiddenError("Tools can only be invoked from the context that owns them")


class ToolDispatcher:
    """Routes JSON-RPC requests to built-in tools and registered plugins."""

    def __init__(
        self,
        registry: PluginRegistry,
        proxy: InvocationProxy,
        builtins: BuiltinToolset,
        settings: Settings,
    ):
        self.registry = registry
        self.proxy = proxy
        self.builtins = builtins
        self._protocol_version = settings.protocol_version
        self._server_info = {"name": settings.app_name, "version": settings.version}
        self._strict_default = settings.strict_initialization
        self._proxy_timeout = settings.proxy_timeout_seconds

    def new_session(self, strict: bool | None = None) -> ProtocolSession:
        return ProtocolSession(strict=self._strict_default if strict is None else strict)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def handle(self, session: ProtocolSession, message: Any, context: Context | None) -> dict[str, Any] | None:
        """Process one decoded JSON-RPC message.

        Returns the response object, or None for notifications. Never raises
        for request-level failures.
        """
        request_id = message.get("id") if isinstance(message, dict) else None
        try:
            request = JsonRpcRequest.model_validate(message)
        except ValidationError:
            return rpc_error(request_id, exc.INVALID_REQUEST, "Invalid request")
        if request.jsonrpc != JSONRPC_VERSION:
            return rpc_error(request_id, exc.INVALID_REQUEST, "Invalid request: jsonrpc must be '2.0'")

        try:
            result = await self._dispatch(session, request, context)
        except ToolgateException as e:
            if request.is_notification:
                logger.info("Notification failed", extra={"method": request.method, "error_code": e.error_code})
                return None
            return error_from_exception(request.id, e)
        except _MethodNotFound:
            if request.is_notification:
                return None
            return rpc_error(request.id, exc.METHOD_NOT_FOUND, f"Method not found: {request.method}")
        except Exception:
            error_id = generate_error_id()
            logger.exception("Unhandled error while dispatching", extra={"method": request.method, "error_id": error_id})
            if request.is_notification:
                return None
            return rpc_error(request.id, exc.INTERNAL_ERROR, "Internal error", {"error_id": error_id})

        if request.is_notification:
            return None
        return rpc_result(request.id, result)

    async def _dispatch(self, session: ProtocolSession, request: JsonRpcRequest, context: Context | None) -> Any:
        method = request.method
        params = request.params or {}

        if method == "initialize":
            return self.initialize(session, params)
        if method.startswith("notifications/"):
            return None
        if method not in SESSION_METHODS:
            raise _MethodNotFound(method)

        if not session.initialized:
            if session.strict:
                raise NotInitializedError(method)
            session.state = SessionState.INITIALIZED

        if method == "ping":
            return {}
        if method == "tools/list":
            return await self.list_tools(context)
        return await self.call_tool(params, context)

    # ------------------------------------------------------------------
    # Methods
    # ------------------------------------------------------------------

    def initialize(self, session: ProtocolSession, params: dict[str, Any]) -> dict[str, Any]:
        """Mark the session initialized. Repeated calls only re-confirm the state."""
        if not session.initialized:
            client_info = params.get("clientInfo")
            session.client_info = client_info if isinstance(client_info, dict) else {}
            session.state = SessionState.INITIALIZED
            logger.debug("Session initialized", extra={"client": session.client_info.get("name")})
        return {
            "protocolVersion": self._protocol_version,
            "capabilities": {"tools": {}},
            "serverInfo": dict(self._server_info),
        }

    async def list_tools(self, context: Context | None) -> dict[str, Any]:
        """Built-ins first, then plugins visible to ``context`` by ascending FQN."""
        descriptors = self.builtins.descriptors()
        if context is not None:
            plugins = await self.registry.list_for_context(context)
            descriptors.extend(metadata.to_descriptor() for metadata in plugins)
        return {"tools": [descriptor.model_dump() for descriptor in descriptors]}

    async def resolve_call_target(self, name: str, context: Context | None) -> CallTarget:
        """Decide what ``name`` refers to for this caller, enforcing access rules."""
        tool = self.builtins.get(name)
        if tool is not None:
            return BuiltinTarget(tool)

        parsed = parse_fqn(name)
        caller = require_context(context)
        ensure_invocation_allowed(caller, parsed.context)
        metadata = await self.registry.resolve(name)
        if not await self.registry.is_enabled(caller, metadata):
            raise ForbiddenError(f"Tool '{name}' is disabled for this context")
        return RegisteredTarget(metadata)

    async def call_tool(self, params: dict[str, Any], context: Context | None) -> dict[str, Any]:
        try:
            call = ToolCallParams.model_validate(params)
        except ValidationError:
            raise exc.InvalidArgumentsError("Invalid tool call parameters: expected 'name' and object 'arguments'") from None

        target = await self.resolve_call_target(call.name, context)
        if isinstance(target, BuiltinTarget):
            result = await self.builtins.call(target.tool, call.arguments)
        else:
            metadata = target.metadata
            validate_arguments(call.arguments, metadata.input_schema)
            result = await self.proxy.invoke(
                metadata.endpoint_url, require_context(context), call.arguments, self._proxy_timeout
            )
            validate_result(metadata.fqn, result, metadata.output_schema)

        logger.info("Tool call succeeded", extra={"tool": call.name, "context": context.key if context else None})
        return {
            "content": [{"type": "text", "text": json.dumps(result, indent=2, ensure_ascii=False)}],
            "isError": False,
        }


class _MethodNotFound(Exception):
    pass
