"""MISP plugin - exposes MISP REST operations as MCP tools.

Every tool issues a single REST call through a shared MispClient and returns
the JSON response as one pretty-printed text item. MISP failures are
reported as tool error results (``isError: true``) rather than protocol
errors, so the caller sees what MISP said.
"""

from __future__ import annotations

import logging
from typing import Any

from misp_mcp import __version__
from misp_mcp.config import ServerConfig
from misp_mcp.plugins.base import PluginBase, ToolDescriptor, ToolResult
from misp_mcp.plugins.misp.client import MispClient
from misp_mcp.plugins.misp.exceptions import (
    MispAPIError,
    MispAuthenticationError,
    MispError,
    MispNotFoundError,
)
from misp_mcp.plugins.misp.tools import MISP_TOOLS, MispTool

logger = logging.getLogger(__name__)

__all__ = [
    "MISP_TOOLS",
    "MispAPIError",
    "MispAuthenticationError",
    "MispClient",
    "MispError",
    "MispNotFoundError",
    "MispPlugin",
    "MispTool",
]


class MispPlugin(PluginBase):
    """Tools backed by a MISP instance."""

    def __init__(self, client: MispClient, tools: tuple[MispTool, ...] = MISP_TOOLS) -> None:
        """Initialize the plugin.

        Args:
            client: Client for the MISP instance.
            tools: Tool table to expose.
        """
        self._client = client
        self._tools = tools

    @classmethod
    def from_config(cls, config: ServerConfig) -> MispPlugin:
        """Create the plugin from the server configuration."""
        client = MispClient(
            base_url=config.misp_url,
            api_key=config.api_key,
            verify_tls=config.verify_tls,
            timeout=config.timeout,
        )
        logger.info("Created MISP client for %s", client.base_url)
        return cls(client)

    @property
    def name(self) -> str:
        return "misp"

    @property
    def version(self) -> str:
        return __version__

    @property
    def client(self) -> MispClient:
        """The underlying REST client."""
        return self._client

    def get_tools(self) -> list[ToolDescriptor]:
        return [
            ToolDescriptor(
                name=tool.name,
                description=tool.description,
                input_schema=tool.input_schema,
                handler=self._make_handler(tool),
            )
            for tool in self._tools
        ]

    def _make_handler(self, tool: MispTool):
        async def handler(arguments: dict[str, Any]) -> ToolResult:
            return await self.call(tool, arguments)

        return handler

    async def call(self, tool: MispTool, arguments: dict[str, Any]) -> ToolResult:
        """Run one MISP tool.

        Args:
            tool: Tool table entry.
            arguments: Arguments already validated against the tool schema.

        Returns:
            The JSON response as text, or an error result if MISP failed.

        Raises:
            McpError: If the arguments cannot be turned into a request body.
        """
        body = tool.build_body(arguments)
        path = tool.build_path(arguments)

        try:
            if tool.method == "POST":
                response = await self._client.post(path, body)
            else:
                response = await self._client.get(path)
            payload = tool.process(response)
        except MispError as e:
            logger.error("%s failed: %s", tool.name, e)
            return ToolResult.error(tool.failure_message(arguments, e))

        return ToolResult.json(payload)

    async def cleanup(self) -> None:
        await self._client.close()
