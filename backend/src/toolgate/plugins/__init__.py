"""Plugin naming, validation, storage and invocation."""

from .fqn import ParsedFqn, format_fqn, parse_fqn, validate_base_name
from .proxy import InvocationProxy
from .registry import PluginRegistry

__all__ = [
    "InvocationProxy",
    "ParsedFqn",
    "PluginRegistry",
    "format_fqn",
    "parse_fqn",
    "validate_base_name",
]
