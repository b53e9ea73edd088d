"""Fully-qualified tool names.

Grammar::

    fqn       = ctx_type "_" ctx_id "_" base_name "_v" version
    ctx_type  = "user" | "group"
    ctx_id    = canonical integer, positive for user, negative for group
    base_name = letter, then up to 63 letters, digits or underscores
    version   = canonical positive integer

A base name may itself contain ``_v<digits>``; the trailing ``_v<version>``
is always the last one in the string, so parsing stays unambiguous and
``parse_fqn(format_fqn(...))`` is the identity.
"""

import re
from typing import NamedTuple

from ..auth.context import Context, ContextType
from ..core.exceptions import InvalidArgumentsError, InvalidContextError, MalformedFqnError

BASE_NAME_PATTERN = re.compile(r"[A-Za-z][A-Za-z0-9_]{0,63}")
_FQN_PATTERN = re.compile(
    r"(?P<type>user|group)_(?P<id>-?(?:0|[1-9]\d*))_(?P<base>[A-Za-z][A-Za-z0-9_]{0,63})_v(?P<version>[1-9]\d*)"
)


class ParsedFqn(NamedTuple):
    context: Context
    base_name: str
    version: int


def validate_base_name(base_name: str) -> str:
    """Return ``base_name`` if it is usable inside an FQN."""
    if not isinstance(base_name, str) or not BASE_NAME_PATTERN.fullmatch(base_name):
        raise InvalidArgumentsError(
            "base_name must start with a letter and contain only letters, digits or underscores (max 64)",
            details={"base_name": base_name},
        )
    return base_name


def format_fqn(context: Context, base_name: str, version: int) -> str:
    """Build the FQN for one plugin version."""
    validate_base_name(base_name)
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise InvalidArgumentsError("version must be a positive integer", details={"version": version})
    return f"{context.type.value}_{context.id}_{base_name}_v{version}"


def parse_fqn(name: str) -> ParsedFqn:
    """Split an FQN into context, base name and version.

    Raises:
        MalformedFqnError: if ``name`` does not match the grammar, including
            ids whose sign contradicts the context type.

    """
    if not isinstance(name, str):
        raise MalformedFqnError(str(name))
    match = _FQN_PATTERN.fullmatch(name)
    if match is None:
        raise MalformedFqnError(name)
    try:
        context = Context(ContextType(match["type"]), int(match["id"]))
    except InvalidContextError as e:
        raise MalformedFqnError(name, details={"name": name, "reason": e.message}) from None
    return ParsedFqn(context, match["base"], int(match["version"]))
