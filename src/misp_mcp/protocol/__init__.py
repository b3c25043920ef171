"""MCP protocol layer for JSON-RPC communication."""

from misp_mcp.protocol.errors import (
    ErrorCategory,
    McpError,
    ProtocolError,
    ToolError,
    error_for_exception,
)
from misp_mcp.protocol.jsonrpc import (
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    MessageDecodeError,
    encode_message,
    format_error,
    format_notification,
    format_response,
    parse_message,
)
from misp_mcp.protocol.lifecycle import (
    MCP_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    LifecycleManager,
    LifecycleState,
)
from misp_mcp.protocol.tools import ToolsHandler, ToolsListResult
from misp_mcp.protocol.transport import (
    MemoryTransport,
    StdioTransport,
    StreamDesyncError,
    TransportError,
    TransportWriteError,
)

__all__ = [
    "ErrorCategory",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "LifecycleManager",
    "LifecycleState",
    "MCP_PROTOCOL_VERSION",
    "McpError",
    "MemoryTransport",
    "MessageDecodeError",
    "ProtocolError",
    "SUPPORTED_PROTOCOL_VERSIONS",
    "StdioTransport",
    "StreamDesyncError",
    "ToolError",
    "ToolsHandler",
    "ToolsListResult",
    "TransportError",
    "TransportWriteError",
    "encode_message",
    "error_for_exception",
    "format_error",
    "format_notification",
    "format_response",
    "parse_message",
]
