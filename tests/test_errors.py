"""Tests for the error taxonomy and exception mapping."""

import asyncio

from misp_mcp.protocol.errors import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    SERIALIZATION_ERROR,
    SHUTTING_DOWN,
    TOOL_EXECUTION_ERROR,
    TOOL_NOT_FOUND,
    TOOL_TIMEOUT,
    TRANSPORT_ERROR,
    ErrorCategory,
    InvalidParamsError,
    McpError,
    ProtocolError,
    ToolError,
    ToolNotFoundError,
    error_for_exception,
    make_error,
)


class TestErrorCategory:
    """Tests for category to code mapping."""

    def test_standard_codes(self):
        """Should map standard categories to JSON-RPC codes."""
        assert ErrorCategory.PARSE_ERROR.code == PARSE_ERROR == -32700
        assert ErrorCategory.INVALID_REQUEST.code == INVALID_REQUEST == -32600
        assert ErrorCategory.METHOD_NOT_FOUND.code == METHOD_NOT_FOUND == -32601
        assert ErrorCategory.INVALID_PARAMS.code == INVALID_PARAMS == -32602
        assert ErrorCategory.INTERNAL_ERROR.code == INTERNAL_ERROR == -32603

    def test_server_codes(self):
        """Should map server categories into the reserved range."""
        assert ErrorCategory.TOOL_NOT_FOUND.code == TOOL_NOT_FOUND == -32000
        assert ErrorCategory.TOOL_EXECUTION_ERROR.code == TOOL_EXECUTION_ERROR == -32001
        assert ErrorCategory.TRANSPORT_ERROR.code == TRANSPORT_ERROR == -32002
        assert ErrorCategory.SERIALIZATION_ERROR.code == SERIALIZATION_ERROR == -32003
        assert ErrorCategory.SHUTTING_DOWN.code == SHUTTING_DOWN == -32004
        assert ErrorCategory.TOOL_TIMEOUT.code == TOOL_TIMEOUT == -32005

    def test_lifecycle_violations_are_invalid_requests(self):
        """Should report lifecycle violations as invalid requests."""
        for category in (
            ErrorCategory.NOT_INITIALIZED,
            ErrorCategory.ALREADY_INITIALIZED,
            ErrorCategory.DUPLICATE_REQUEST_ID,
        ):
            assert category.code == INVALID_REQUEST

    def test_every_code_is_an_integer(self):
        """Should give every category a plain integer code."""
        for category in ErrorCategory:
            assert type(category.code) is int, category.name

    def test_every_category_has_a_message(self):
        """Should have a default message for every category."""
        for category in ErrorCategory:
            assert category.default_message


class TestMakeError:
    """Tests for error object construction."""

    def test_omits_data_when_absent(self):
        """Should leave out data when not given."""
        assert make_error(-32601, "Method not found") == {
            "code": -32601,
            "message": "Method not found",
        }

    def test_includes_data(self):
        """Should include data when given."""
        error = make_error(-32000, "Tool not found: x", {"tool": "x"})
        assert error["data"] == {"tool": "x"}


class TestMcpError:
    """Tests for McpError and its subclasses."""

    def test_uses_default_message(self):
        """Should fall back to the category message."""
        error = InvalidParamsError()
        assert error.message == "Invalid params"
        assert error.code == INVALID_PARAMS

    def test_category_override(self):
        """Should allow overriding the category per instance."""
        error = ProtocolError(category=ErrorCategory.SHUTTING_DOWN)
        assert error.code == SHUTTING_DOWN
        assert error.message == "Server is shutting down"
        # Class default is untouched
        assert ProtocolError().code == INVALID_REQUEST

    def test_to_error(self):
        """Should convert to an error object with data."""
        error = ToolNotFoundError("Tool not found: x", data={"tool": "x"})
        assert error.to_error() == {
            "code": TOOL_NOT_FOUND,
            "message": "Tool not found: x",
            "data": {"tool": "x"},
        }


class TestToolError:
    """Tests for application errors raised by tools."""

    def test_passes_application_code_through(self):
        """Should keep a positive application code."""
        error = ToolError("quota exhausted", code=429, data={"retry": 5})
        assert error.to_error() == {
            "code": 429,
            "message": "quota exhausted",
            "data": {"retry": 5},
        }

    def test_replaces_reserved_code(self):
        """Should not let a tool impersonate a protocol error."""
        assert ToolError("bad", code=-32600).to_error()["code"] == TOOL_EXECUTION_ERROR
        assert ToolError("bad", code=0).to_error()["code"] == TOOL_EXECUTION_ERROR

    def test_defaults_to_execution_error(self):
        """Should use the execution error code when none is given."""
        assert ToolError("bad").to_error()["code"] == TOOL_EXECUTION_ERROR


class TestErrorForException:
    """Tests for mapping arbitrary exceptions."""

    def test_maps_mcp_error(self):
        """Should use the exception's own mapping."""
        error = error_for_exception(InvalidParamsError("nope"))
        assert error == {"code": INVALID_PARAMS, "message": "nope"}

    def test_maps_timeout(self):
        """Should map timeouts to the tool timeout code."""
        error = error_for_exception(asyncio.TimeoutError(), "slow")
        assert error["code"] == TOOL_TIMEOUT
        assert error["message"] == "Tool 'slow' timed out"
        assert error["data"] == {"tool": "slow"}

    def test_maps_tool_exception(self):
        """Should map handler exceptions to execution errors naming the tool."""
        error = error_for_exception(RuntimeError("boom"), "echo")
        assert error["code"] == TOOL_EXECUTION_ERROR
        assert "boom" in error["message"]
        assert error["data"] == {"type": "RuntimeError", "tool": "echo"}

    def test_maps_unexpected_exception_without_tool(self):
        """Should map other failures to internal errors."""
        error = error_for_exception(KeyError("x"))
        assert error["code"] == INTERNAL_ERROR
        assert error["data"] == {"type": "KeyError"}

    def test_mcp_error_is_exception(self):
        """Should be catchable as a normal exception."""
        assert issubclass(McpError, Exception)
