"""Tool registry - the fixed catalog of tools the server exposes."""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from jsonschema.exceptions import SchemaError

from canvas_mcp.plugins.base import PluginBase, ToolDefinition
from canvas_mcp.protocol.validation import ParameterValidator


class RegistryError(Exception):
    """Raised when the catalog cannot be built as requested."""

    pass


class DuplicateToolError(RegistryError):
    """Raised when two tools share a name."""

    pass


@dataclass(frozen=True)
class ToolDescriptor:
    """A registered tool: its definition plus the plugin that runs it."""

    definition: ToolDefinition
    handler: PluginBase

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def input_schema(self) -> dict[str, Any]:
        return self.definition.input_schema

    @property
    def cacheable(self) -> bool:
        return self.definition.cacheable

    async def invoke(self, arguments: dict[str, Any]) -> Any:
        """Run the tool handler."""
        return await self.handler.execute(self.definition.name, arguments)

    def to_dict(self) -> dict[str, Any]:
        """MCP tools/list entry."""
        return self.definition.to_dict()


class ToolRegistry:
    """Holds tool descriptors in registration order.

    Tools are registered at startup and the registry is then frozen;
    lookups after that are read-only.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._tools: dict[str, ToolDescriptor] = {}
        self._plugins: list[PluginBase] = []
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def plugins(self) -> list[PluginBase]:
        return list(self._plugins)

    def register(self, definition: ToolDefinition, handler: PluginBase) -> ToolDescriptor:
        """Register a single tool.

        Args:
            definition: Tool definition.
            handler: Plugin that executes the tool.

        Returns:
            The new descriptor.

        Raises:
            RegistryError: If the registry is frozen or the schema is invalid.
            DuplicateToolError: If the name is already registered.
        """
        with self._lock:
            if self._frozen:
                raise RegistryError(f"Cannot register '{definition.name}': registry is frozen")
            if definition.name in self._tools:
                raise DuplicateToolError(f"Tool already registered: {definition.name}")
            try:
                ParameterValidator.check_schema(definition.input_schema)
            except SchemaError as e:
                raise RegistryError(
                    f"Invalid input schema for tool {definition.name}: {e.message}"
                ) from e

            # Own a private copy so later edits to the plugin's dict cannot leak in
            frozen_definition = ToolDefinition(
                name=definition.name,
                description=definition.description,
                input_schema=copy.deepcopy(definition.input_schema),
                cacheable=definition.cacheable,
                ttl=definition.ttl,
                timeout=definition.timeout,
            )
            descriptor = ToolDescriptor(definition=frozen_definition, handler=handler)
            self._tools[definition.name] = descriptor
            return descriptor

    def register_plugin(self, plugin: PluginBase) -> None:
        """Register every tool a plugin provides.

        Args:
            plugin: Plugin instance to register.
        """
        for tool in plugin.get_tools():
            self.register(tool, plugin)
        self._plugins.append(plugin)

    def freeze(self) -> None:
        """Reject any further registration."""
        with self._lock:
            self._frozen = True

    def lookup(self, name: str) -> ToolDescriptor | None:
        """Find a tool by name."""
        return self._tools.get(name)

    def list(self) -> list[ToolDescriptor]:
        """All descriptors in registration order."""
        return list(self._tools.values())

    def list_tools(self) -> list[dict[str, Any]]:
        """All tools in MCP tools/list format."""
        return [descriptor.to_dict() for descriptor in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self.list())
