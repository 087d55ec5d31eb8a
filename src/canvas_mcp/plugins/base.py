"""Plugin base class and data structures.

Defines the interface that all tool plugins must implement.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ToolDefinition:
    """Definition of a tool provided by a plugin.

    Attributes:
        name: Unique tool name.
        description: Human-readable description for tools/list.
        input_schema: JSON Schema for the tool arguments.
        cacheable: Whether successful results may be served from the cache.
            Tools that change upstream state must leave this False.
        ttl: Cache lifetime in seconds (None means the server default).
        timeout: Handler timeout in seconds (None means the server default).
    """

    name: str
    description: str
    input_schema: dict[str, Any]
    cacheable: bool = False
    ttl: float | None = None
    timeout: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to MCP tool format.

        Returns:
            Dictionary in MCP tools/list format.
        """
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


class PluginBase(ABC):
    """Abstract base class for all plugins.

    Plugins must implement this interface to provide tools
    to the MCP server.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the plugin identifier."""
        pass

    @property
    @abstractmethod
    def version(self) -> str:
        """Return the plugin version."""
        pass

    @abstractmethod
    def get_tools(self) -> list[ToolDefinition]:
        """Return tool definitions provided by this plugin.

        Returns:
            List of ToolDefinition objects.
        """
        pass

    @abstractmethod
    async def execute(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        """Execute a tool.

        Args:
            tool_name: Name of the tool to execute.
            arguments: Validated and coerced tool arguments.

        Returns:
            JSON-compatible result data.

        Raises:
            Exception: Any failure; the server maps it to a protocol error.
        """
        pass

    async def cleanup(self) -> None:
        """Release plugin resources.

        Override in subclasses that hold connections or files.
        Called by MCPServer.close() during shutdown.
        """
        return None
