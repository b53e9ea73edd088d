"""
Pydantic schemas for Toolgate.

Request/response models for the management API and the JSON-RPC surface.
"""

from .envelope import ErrorResponse, SuccessResponse
from .mcp import JsonRpcRequest, ToolCallParams, ToolDescriptor
from .plugin import (
    EnablementRequest,
    EnablementStatus,
    PluginMetadata,
    PluginRegisterRequest,
    PluginRegistration,
    PluginUpdateRequest,
)

__all__ = [
    "EnablementRequest",
    "EnablementStatus",
    "ErrorResponse",
    "JsonRpcRequest",
    "PluginMetadata",
    "PluginRegisterRequest",
    "PluginRegistration",
    "PluginUpdateRequest",
    "SuccessResponse",
    "ToolCallParams",
    "ToolDescriptor",
]
