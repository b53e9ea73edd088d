"""
Envelope schemas for standardized API responses.

Success responses wrap the payload in ``data``; failures carry an ``error``
object with a code, a message and optional details.
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class SuccessResponse(BaseModel, Generic[T]):
    """Standardized success response envelope."""

    data: T


class ErrorResponse(BaseModel):
    """Standardized error response envelope."""

    error: dict[str, Any]
