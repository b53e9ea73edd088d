"""JSON-RPC frames and tool descriptors for the protocol surface."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

JSONRPC_VERSION = "2.0"


class ToolDescriptor(BaseModel):
    """Shape of a tool as listed to protocol clients."""

    name: str
    description: str
    input_schema: dict[str, Any]


class JsonRpcRequest(BaseModel):
    """Inbound JSON-RPC request or notification."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: str
    id: int | str | None = None
    method: str = Field(..., min_length=1)
    params: dict[str, Any] | None = None

    @property
    def is_notification(self) -> bool:
        return "id" not in self.model_fields_set


class ToolCallParams(BaseModel):
    """Parameters of ``tools/call``."""

    name: str = Field(..., min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)


def rpc_result(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def rpc_error(request_id: Any, code: int, message: str, data: Any = None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}
