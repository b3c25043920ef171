"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from misp_mcp.plugins.base import PluginBase, ToolDescriptor, ToolResult
from misp_mcp.protocol.errors import ToolError
from misp_mcp.protocol.transport import MemoryTransport
from misp_mcp.server import MCPServer


class MockPlugin(PluginBase):
    """Plugin with tools that exercise the server's execution paths."""

    def __init__(self) -> None:
        self.gates: dict[str, asyncio.Event] = {}
        self.started: dict[str, asyncio.Event] = {}
        self.cleaned_up = False

    @property
    def name(self) -> str:
        return "mock"

    @property
    def version(self) -> str:
        return "1.0.0"

    def gate(self, key: str) -> asyncio.Event:
        """Event a ``wait`` call with this key blocks on."""
        return self.gates.setdefault(key, asyncio.Event())

    def started_event(self, key: str) -> asyncio.Event:
        """Event set once a ``wait`` call with this key is running."""
        return self.started.setdefault(key, asyncio.Event())

    def get_tools(self) -> list[ToolDescriptor]:
        return [
            ToolDescriptor(
                name="echo",
                description="Echoes input",
                input_schema={
                    "type": "object",
                    "properties": {"message": {"type": "string"}},
                    "required": ["message"],
                },
                handler=self._echo,
            ),
            ToolDescriptor(
                name="wait",
                description="Blocks until released, then echoes the key",
                input_schema={
                    "type": "object",
                    "properties": {"key": {"type": "string"}},
                    "required": ["key"],
                },
                handler=self._wait,
            ),
            ToolDescriptor(
                name="fail",
                description="Raises the requested kind of error",
                input_schema={
                    "type": "object",
                    "properties": {
                        "kind": {"type": "string", "enum": ["runtime", "tool", "tool_low_code"]}
                    },
                    "required": ["kind"],
                },
                handler=self._fail,
            ),
            ToolDescriptor(
                name="unserializable",
                description="Returns a result that is not JSON-serializable",
                input_schema={"type": "object"},
                handler=self._unserializable,
            ),
        ]

    async def _echo(self, arguments: dict[str, Any]) -> ToolResult:
        return ToolResult.text(arguments["message"])

    async def _wait(self, arguments: dict[str, Any]) -> ToolResult:
        key = arguments["key"]
        self.started_event(key).set()
        await self.gate(key).wait()
        return ToolResult.text(key)

    async def _fail(self, arguments: dict[str, Any]) -> ToolResult:
        kind = arguments["kind"]
        if kind == "tool":
            raise ToolError("quota exhausted", code=429, data={"retry": 5})
        if kind == "tool_low_code":
            raise ToolError("bad code", code=-32600)
        raise RuntimeError("boom")

    async def _unserializable(self, arguments: dict[str, Any]) -> ToolResult:
        return ToolResult(content=[{"type": "text", "text": object()}])

    async def cleanup(self) -> None:
        self.cleaned_up = True


def request(msg_id: Any, method: str, params: Any = None) -> dict[str, Any]:
    """Build a JSON-RPC request dict."""
    message: dict[str, Any] = {"jsonrpc": "2.0", "id": msg_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def notification(method: str, params: Any = None) -> dict[str, Any]:
    """Build a JSON-RPC notification dict."""
    message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        message["params"] = params
    return message


def initialize_request(msg_id: Any = 1, version: str = "2024-11-05") -> dict[str, Any]:
    """Build a standard initialize request."""
    return request(
        msg_id,
        "initialize",
        {
            "protocolVersion": version,
            "clientInfo": {"name": "test", "version": "1.0"},
            "capabilities": {},
        },
    )


def call_request(msg_id: Any, tool: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a tools/call request."""
    params: dict[str, Any] = {"name": tool}
    if arguments is not None:
        params["arguments"] = arguments
    return request(msg_id, "tools/call", params)


@pytest.fixture
def plugin() -> MockPlugin:
    """Create the mock plugin."""
    return MockPlugin()


@pytest.fixture
def server(plugin: MockPlugin) -> MCPServer:
    """Create a server with the mock plugin registered."""
    server = MCPServer(tool_timeout=5.0, drain_timeout=2.0)
    server.register_plugin(plugin)
    return server


@pytest.fixture
def transport() -> MemoryTransport:
    """Create an in-memory transport."""
    return MemoryTransport()
