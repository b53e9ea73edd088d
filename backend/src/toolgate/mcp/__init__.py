"""JSON-RPC tool protocol: dispatcher and stdio transport."""

from .dispatcher import ProtocolSession, SessionState, ToolDispatcher, ensure_invocation_allowed, error_from_exception
from .stdio import StdioServer, run_stdio

__all__ = [
    "ProtocolSession",
    "SessionState",
    "StdioServer",
    "ToolDispatcher",
    "ensure_invocation_allowed",
    "error_from_exception",
    "run_stdio",
]
