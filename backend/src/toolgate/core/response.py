"""Response helpers for the Toolgate management API.

Successful payloads are wrapped in a single ``{"data": ...}`` envelope and
failures in ``{"error": {...}}``.
"""

import uuid
from typing import Any

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response


def generate_error_id() -> str:
    """Generate a unique error ID for correlating client errors with server logs."""
    return f"ERR-{uuid.uuid4().hex[:8].upper()}"


def to_serializable(obj: Any) -> Any:
    """Recursively convert Pydantic models, lists, and dicts to serializable types."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if isinstance(obj, list):
        return [to_serializable(item) for item in obj]
    if isinstance(obj, dict):
        return {k: to_serializable(v) for k, v in obj.items()}
    return obj


class ToolgateResponse:
    """Consistent response formatting for management endpoints."""

    @staticmethod
    def success(
        data: Any, status_code: int = status.HTTP_200_OK, headers: dict[str, str] | None = None
    ) -> JSONResponse:
        """Create a successful response with single-envelope structure."""
        content = jsonable_encoder({"data": to_serializable(data)})
        return JSONResponse(content=content, status_code=status_code, headers=headers)

    @staticmethod
    def error(
        message: str,
        code: str = "API_ERROR",
        details: Any | None = None,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        headers: dict[str, str] | None = None,
    ) -> JSONResponse:
        """Create an error response with consistent envelope structure."""
        error_content: dict[str, Any] = {"error": {"message": message, "code": code}}
        if details:
            error_content["error"]["details"] = to_serializable(details)
        return JSONResponse(content=jsonable_encoder(error_content), status_code=status_code, headers=headers)

    @staticmethod
    def created(data: Any, headers: dict[str, str] | None = None) -> JSONResponse:
        """Create a 201 Created response."""
        return ToolgateResponse.success(data, status.HTTP_201_CREATED, headers)

    @staticmethod
    def no_content(headers: dict[str, str] | None = None) -> Response:
        """Create a 204 No Content response."""
        return Response(status_code=status.HTTP_204_NO_CONTENT, headers=headers)
