"""Error taxonomy and JSON-RPC error mapping.

Every failure the server can produce belongs to exactly one ErrorCategory,
and every category maps to exactly one JSON-RPC error code. Exceptions raised
anywhere in the protocol layer carry their category so the dispatch boundary
can turn them into an error object without guessing.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any

# Standard JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Server error codes (-32000 to -32099 are reserved for implementations)
TOOL_NOT_FOUND = -32000
TOOL_EXECUTION_ERROR = -32001
TRANSPORT_ERROR = -32002
SERIALIZATION_ERROR = -32003
SHUTTING_DOWN = -32004
TOOL_TIMEOUT = -32005

# Member names below shadow the module constants inside the Enum body
_INVALID_REQUEST_CODE = INVALID_REQUEST

# Lowest code a tool may report through ToolError
APPLICATION_ERROR_FLOOR = 1


class ErrorCategory(Enum):
    """Internal failure categories, each bound to a code and default message."""

    PARSE_ERROR = (PARSE_ERROR, "Parse error")
    INVALID_REQUEST = (INVALID_REQUEST, "Invalid Request")
    NOT_INITIALIZED = (_INVALID_REQUEST_CODE, "Server not initialized")
    ALREADY_INITIALIZED = (_INVALID_REQUEST_CODE, "Server already initialized")
    DUPLICATE_REQUEST_ID = (_INVALID_REQUEST_CODE, "Duplicate request id")
    METHOD_NOT_FOUND = (METHOD_NOT_FOUND, "Method not found")
    INVALID_PARAMS = (INVALID_PARAMS, "Invalid params")
    INTERNAL_ERROR = (INTERNAL_ERROR, "Internal error")
    TOOL_NOT_FOUND = (TOOL_NOT_FOUND, "Tool not found")
    TOOL_EXECUTION_ERROR = (TOOL_EXECUTION_ERROR, "Tool execution failed")
    TRANSPORT_ERROR = (TRANSPORT_ERROR, "Transport error")
    SERIALIZATION_ERROR = (SERIALIZATION_ERROR, "Result could not be serialized")
    SHUTTING_DOWN = (SHUTTING_DOWN, "Server is shutting down")
    TOOL_TIMEOUT = (TOOL_TIMEOUT, "Tool execution timed out")

    @property
    def code(self) -> int:
        """JSON-RPC error code for this category."""
        return self.value[0]

    @property
    def default_message(self) -> str:
        """Message used when the raiser supplies none."""
        return self.value[1]


def make_error(code: int, message: str, data: Any | None = None) -> dict[str, Any]:
    """Build a JSON-RPC error object.

    Args:
        code: Error code.
        message: Human-readable error message.
        data: Optional additional error data.

    Returns:
        Error object dict, with ``data`` only when given.
    """
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return error


class McpError(Exception):
    """Base class for failures that map onto a JSON-RPC error."""

    category: ErrorCategory = ErrorCategory.INTERNAL_ERROR

    def __init__(
        self,
        message: str | None = None,
        data: Any | None = None,
        category: ErrorCategory | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            message: Human-readable message (defaults to the category's).
            data: Optional additional error data.
            category: Overrides the class-level category.
        """
        if category is not None:
            self.category = category
        self.message = message or self.category.default_message
        self.data = data
        super().__init__(self.message)

    @property
    def code(self) -> int:
        """JSON-RPC error code."""
        return self.category.code

    def to_error(self) -> dict[str, Any]:
        """Convert to a JSON-RPC error object."""
        return make_error(self.code, self.message, self.data)


class ProtocolError(McpError):
    """Raised when a method is invalid for the current lifecycle state."""

    category = ErrorCategory.INVALID_REQUEST


class InvalidParamsError(McpError):
    """Raised when request parameters do not match what a method expects."""

    category = ErrorCategory.INVALID_PARAMS


class MethodNotFoundError(McpError):
    """Raised for methods the server does not implement."""

    category = ErrorCategory.METHOD_NOT_FOUND


class ToolNotFoundError(McpError):
    """Raised when a tool is not registered."""

    category = ErrorCategory.TOOL_NOT_FOUND


class ToolExecutionError(McpError):
    """Raised when a tool fails to execute."""

    category = ErrorCategory.TOOL_EXECUTION_ERROR


class ToolError(Exception):
    """Raised by tool handlers to report an application error verbatim.

    The code and message are passed through to the caller unchanged. Codes
    below APPLICATION_ERROR_FLOOR would collide with protocol codes and are
    replaced by TOOL_EXECUTION_ERROR.
    """

    def __init__(self, message: str, code: int | None = None, data: Any | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data

    def to_error(self) -> dict[str, Any]:
        """Convert to a JSON-RPC error object."""
        code = self.code
        if code is None or code < APPLICATION_ERROR_FLOOR:
            code = TOOL_EXECUTION_ERROR
        return make_error(code, self.message, self.data)


def error_for_exception(exc: BaseException, tool_name: str | None = None) -> dict[str, Any]:
    """Map any exception to a JSON-RPC error object.

    Args:
        exc: The exception to convert.
        tool_name: Name of the tool that raised it, if any.

    Returns:
        Error object dict. Never raises.
    """
    if isinstance(exc, (McpError, ToolError)):
        return exc.to_error()

    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        category = ErrorCategory.TOOL_TIMEOUT
        message = category.default_message
        if tool_name:
            message = f"Tool '{tool_name}' timed out"
        return make_error(category.code, message, {"tool": tool_name} if tool_name else None)

    data: dict[str, Any] = {"type": type(exc).__name__}
    if tool_name is None:
        return make_error(INTERNAL_ERROR, f"Internal error: {exc}", data)

    data["tool"] = tool_name
    return make_error(TOOL_EXECUTION_ERROR, f"Tool '{tool_name}' execution failed: {exc}", data)
