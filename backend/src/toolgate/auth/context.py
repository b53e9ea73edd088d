"""Caller context resolution.

A context is the tenant on whose behalf a request is made: an individual user
(positive id) or a group (negative id). Contexts arrive as two loose strings,
from headers on networked transports or from payload fields on stdio, and are
validated here without touching storage.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..core.exceptions import InvalidContextError

_INT_PATTERN = re.compile(r"-?\d+")
_MAX_CONTEXT_ID = 2**63 - 1


class ContextType(str, Enum):
    """Tenant kinds."""

    USER = "user"
    GROUP = "group"


@dataclass(frozen=True)
class Context:
    """Validated ``(type, id)`` pair. Users are positive, groups negative."""

    type: ContextType
    id: int

    def __post_init__(self) -> None:
        if not isinstance(self.type, ContextType):
            raise InvalidContextError("context_type must be 'user' or 'group'")
        if isinstance(self.id, bool) or not isinstance(self.id, int):
            raise InvalidContextError("context_id must be an integer")
        if abs(self.id) > _MAX_CONTEXT_ID:
            raise InvalidContextError("context_id is out of range")
        if self.type is ContextType.USER and self.id <= 0:
            raise InvalidContextError("user context ids must be positive")
        if self.type is ContextType.GROUP and self.id >= 0:
            raise InvalidContextError("group context ids must be negative")

    @classmethod
    def user(cls, context_id: int) -> "Context":
        return cls(ContextType.USER, context_id)

    @classmethod
    def group(cls, context_id: int) -> "Context":
        return cls(ContextType.GROUP, context_id)

    @property
    def key(self) -> str:
        """Composite key used for rate limiting and logging, e.g. ``user:555``."""
        return f"{self.type.value}:{self.id}"

    def __str__(self) -> str:
        return self.key


def _parse_type(raw: Any) -> ContextType:
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidContextError("context_type must be a non-empty string")
    try:
        return ContextType(raw.strip().lower())
    except ValueError:
        raise InvalidContextError("context_type must be 'user' or 'group'") from None


def _parse_id(raw: Any) -> int:
    if isinstance(raw, bool):
        raise InvalidContextError("context_id must be an integer")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and _INT_PATTERN.fullmatch(raw.strip()):
        return int(raw.strip())
    raise InvalidContextError("context_id must be an integer")


def resolve_context(context_type: Any, context_id: Any) -> Context | None:
    """Build a context from raw carriers.

    Returns None when neither value is present. Fails with
    ``InvalidContextError`` when only one is present, the type is unknown, the
    id is not an integer or its sign does not match the type.
    """
    type_missing = context_type is None or (isinstance(context_type, str) and not context_type.strip())
    id_missing = context_id is None or (isinstance(context_id, str) and not context_id.strip())
    if type_missing and id_missing:
        return None
    if type_missing or id_missing:
        raise InvalidContextError("context_type and context_id must be provided together")
    return Context(_parse_type(context_type), _parse_id(context_id))


def resolve_from_headers(headers: Mapping[str, str], type_header: str, id_header: str) -> Context | None:
    """Resolve a context from networked transport headers."""
    return resolve_context(headers.get(type_header), headers.get(id_header))


def resolve_from_payload(payload: Mapping[str, Any]) -> Context | None:
    """Resolve a context from the top-level ``context_type``/``context_id`` fields of a frame."""
    return resolve_context(payload.get("context_type"), payload.get("context_id"))


def require_context(context: Context | None) -> Context:
    """Return ``context`` or fail when the request carried none."""
    if context is None:
        raise InvalidContextError("context_type and context_id are required")
    return context
