"""Authentication and caller context for Toolgate."""

from .api_key import STDIO_PRINCIPAL, ApiKeyAuthenticator, Principal, key_fingerprint
from .context import Context, ContextType, require_context, resolve_context, resolve_from_headers, resolve_from_payload

__all__ = [
    "STDIO_PRINCIPAL",
    "ApiKeyAuthenticator",
    "Context",
    "ContextType",
    "Principal",
    "key_fingerprint",
    "require_context",
    "resolve_context",
    "resolve_from_headers",
    "resolve_from_payload",
]
