"""Toolgate: multi-tenant tool registry and JSON-RPC dispatch server."""

__version__ = "0.1.0"
