"""MCP tools/list and tools/call handlers.

Handles tool-related MCP requests against the frozen tool registry. Failures
are raised as McpError subclasses (or whatever the handler raised) and left
to the dispatcher to map onto error responses.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from misp_mcp.plugins.base import ToolResult
from misp_mcp.protocol.errors import InvalidParamsError, ToolExecutionError
from misp_mcp.protocol.validation import ArgumentValidator

if TYPE_CHECKING:
    from misp_mcp.plugins.base import ToolDescriptor
    from misp_mcp.plugins.registry import ToolRegistry


@dataclass
class ToolsListResult:
    """Result of tools/list request."""

    tools: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        """Convert to MCP result format.

        Returns:
            Dictionary in MCP tools/list result format.
        """
        return {"tools": self.tools}


@dataclass
class ToolCall:
    """Validated parameters of a tools/call request."""

    name: str
    arguments: dict[str, Any]


def parse_call_params(params: Any) -> ToolCall:
    """Extract the tool name and arguments from tools/call params.

    Args:
        params: Decoded request params.

    Returns:
        ToolCall with arguments defaulted to an empty object.

    Raises:
        InvalidParamsError: If the params are malformed.
    """
    if not isinstance(params, dict):
        raise InvalidParamsError("tools/call params must be an object")

    name = params.get("name")
    if not isinstance(name, str) or not name:
        raise InvalidParamsError("Missing required parameter: name")

    arguments = params.get("arguments")
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise InvalidParamsError("arguments must be an object", data={"tool": name})

    return ToolCall(name=name, arguments=arguments)


class ToolsHandler:
    """Handles tools/list and tools/call MCP requests.

    Looks tools up in the registry, validates arguments against their input
    schema, and runs handlers under the per-call timeout.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        validator: ArgumentValidator | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the handler.

        Args:
            registry: Tool registry to serve.
            validator: Argument validator (a default one is created if omitted).
            timeout: Seconds a single handler may run, or None for no limit.
        """
        self._registry = registry
        self._validator = validator or ArgumentValidator()
        self._timeout = timeout

    def handle_list(self) -> ToolsListResult:
        """Handle tools/list request.

        Returns:
            ToolsListResult with all registered tools.
        """
        return ToolsListResult(tools=self._registry.list_tools())

    def resolve(self, name: str) -> ToolDescriptor:
        """Find the descriptor for a tools/call request.

        Raises:
            ToolNotFoundError: If the tool is not registered.
        """
        return self._registry.lookup(name)

    async def handle_call(self, tool: ToolDescriptor, arguments: dict[str, Any]) -> ToolResult:
        """Run one tool call to completion.

        Args:
            tool: Descriptor of the tool to run.
            arguments: Tool arguments.

        Returns:
            The handler's ToolResult.

        Raises:
            InvalidParamsError: If the arguments do not match the input schema.
            ToolExecutionError: If the handler returns something other than a ToolResult.
            TimeoutError: If the handler exceeds the timeout.
            Exception: Anything the handler itself raises.
        """
        self._validator.validate(tool.name, tool.input_schema, arguments)

        if self._timeout is not None:
            result = await asyncio.wait_for(tool.handler(arguments), self._timeout)
        else:
            result = await tool.handler(arguments)

        if not isinstance(result, ToolResult):
            raise ToolExecutionError(
                f"Tool '{tool.name}' returned {type(result).__name__}, expected ToolResult",
                data={"tool": tool.name},
            )
        return result
