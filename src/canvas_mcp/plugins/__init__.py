"""Plugin system for Canvas MCP tools."""

from canvas_mcp.plugins.base import PluginBase, ToolDefinition
from canvas_mcp.plugins.canvas import (
    AssignmentsPlugin,
    CoursesPlugin,
    DiscussionsPlugin,
    UnknownToolError,
    UsersPlugin,
    canvas_plugins,
)
from canvas_mcp.plugins.registry import (
    DuplicateToolError,
    RegistryError,
    ToolDescriptor,
    ToolRegistry,
)

__all__ = [
    "AssignmentsPlugin",
    "CoursesPlugin",
    "DiscussionsPlugin",
    "DuplicateToolError",
    "PluginBase",
    "RegistryError",
    "ToolDefinition",
    "ToolDescriptor",
    "ToolRegistry",
    "UnknownToolError",
    "UsersPlugin",
    "canvas_plugins",
]
