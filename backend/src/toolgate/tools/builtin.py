"""Built-in tools served directly by this process.

Built-ins have fixed literal names, need no caller context and are listed
ahead of registry plugins.
"""

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from ..plugins.schema_validation import check_schema, validate_arguments
from ..schemas.mcp import ToolDescriptor

ToolHandler = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class BuiltinTool:
    name: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler = field(compare=False)

    def to_descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(name=self.name, description=self.description, input_schema=self.input_schema)


class BuiltinToolset:
    """Ordered collection of built-in tools keyed by name."""

    def __init__(self, tools: Iterable[BuiltinTool] = ()):
        self._tools: dict[str, BuiltinTool] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f"Duplicate built-in tool '{tool.name}'")
            check_schema(tool.input_schema, field=f"{tool.name}.input_schema", require_object_type=True)
            self._tools[tool.name] = tool

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def get(self, name: str) -> BuiltinTool | None:
        return self._tools.get(name)

    def descriptors(self) -> list[ToolDescriptor]:
        """Descriptors in registration order."""
        return [tool.to_descriptor() for tool in self._tools.values()]

    async def call(self, tool: BuiltinTool, arguments: dict[str, Any]) -> Any:
        """Validate ``arguments`` against the tool's schema and run it."""
        validate_arguments(arguments, tool.input_schema)
        return await tool.handler(arguments)
