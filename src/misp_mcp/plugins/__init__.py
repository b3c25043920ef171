"""Plugin system for MCP tools."""

from misp_mcp.plugins.base import (
    PluginBase,
    ToolDescriptor,
    ToolResult,
    image_content,
    resource_content,
    text_content,
)
from misp_mcp.plugins.registry import (
    DuplicateToolError,
    RegistryError,
    RegistryFrozenError,
    ToolRegistry,
)

__all__ = [
    "DuplicateToolError",
    "PluginBase",
    "RegistryError",
    "RegistryFrozenError",
    "ToolDescriptor",
    "ToolRegistry",
    "ToolResult",
    "image_content",
    "resource_content",
    "text_content",
]
