"""Plugin base class and data structures.

Defines the interface that all plugins must implement. A plugin contributes
ToolDescriptors; each descriptor carries its own async handler, so the
dispatcher never needs to route back through the plugin object.

Example:

    class EchoPlugin(PluginBase):
        name = "echo"
        version = "1.0.0"

        def get_tools(self) -> list[ToolDescriptor]:
            return [
                ToolDescriptor(
                    name="echo",
                    description="Return the given text",
                    input_schema={
                        "type": "object",
                        "properties": {"text": {"type": "string"}},
                        "required": ["text"],
                    },
                    handler=self._echo,
                )
            ]

        async def _echo(self, arguments: dict[str, Any]) -> ToolResult:
            return ToolResult.text(arguments["text"])
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

ToolHandler = Callable[[dict[str, Any]], Awaitable["ToolResult"]]


def text_content(text: str) -> dict[str, Any]:
    """Build a text content item."""
    return {"type": "text", "text": text}


def image_content(data: str, mime_type: str) -> dict[str, Any]:
    """Build an image content item.

    Args:
        data: Base64-encoded image bytes.
        mime_type: Image MIME type, e.g. ``image/png``.
    """
    return {"type": "image", "data": data, "mimeType": mime_type}


def resource_content(
    uri: str, text: str | None = None, mime_type: str | None = None
) -> dict[str, Any]:
    """Build an embedded resource content item."""
    resource: dict[str, Any] = {"uri": uri}
    if mime_type is not None:
        resource["mimeType"] = mime_type
    if text is not None:
        resource["text"] = text
    return {"type": "resource", "resource": resource}


@dataclass(frozen=True)
class ToolDescriptor:
    """Definition of a tool: its contract and the coroutine that runs it."""

    name: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler = field(compare=False, repr=False)

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


@dataclass
class ToolResult:
    """Result of a tool execution.

    Content items keep the order the handler produced them in.
    """

    content: list[dict[str, Any]]
    is_error: bool = False

    @classmethod
    def text(cls, text: str) -> ToolResult:
        """Build a result holding a single text item."""
        return cls(content=[text_content(text)])

    @classmethod
    def json(cls, value: Any) -> ToolResult:
        """Build a result holding ``value`` as pretty-printed JSON text."""
        return cls(content=[text_content(json.dumps(value, indent=2, ensure_ascii=False))])

    @classmethod
    def error(cls, message: str) -> ToolResult:
        """Build a tool-level error result (``isError: true``)."""
        return cls(content=[text_content(message)], is_error=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to MCP result format.

        Returns:
            Dictionary in MCP tools/call result format.
        """
        return {
            "content": self.content,
            "isError": self.is_error,
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
    def get_tools(self) -> list[ToolDescriptor]:
        """Return tool descriptors provided by this plugin.

        Returns:
            List of ToolDescriptor objects, in the order they should be listed.
        """
        pass

    async def cleanup(self) -> None:
        """Release resources held by the plugin.

        Called once by the server after the session has drained.
        """
