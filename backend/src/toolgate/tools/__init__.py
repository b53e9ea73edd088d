"""Built-in tools."""

from ..core.config import Settings
from ..core.http_client import HTTPClientManager
from .builtin import BuiltinTool, BuiltinToolset
from .gecko_terminal import GeckoTerminalTools


def build_builtin_toolset(settings: Settings, http: HTTPClientManager) -> BuiltinToolset:
    """Assemble the built-in tools enabled by configuration."""
    if not settings.builtin_tools_enabled:
        return BuiltinToolset()
    return BuiltinToolset(GeckoTerminalTools(http, timeout=settings.builtin_timeout_seconds).tools())


__all__ = ["BuiltinTool", "BuiltinToolset", "GeckoTerminalTools", "build_builtin_toolset"]
