"""JSON-RPC 2.0 message parsing and formatting.

Implements the JSON-RPC 2.0 envelope used by MCP. Decoding distinguishes
three failure shapes (bad bytes, bad JSON, bad envelope), each with its own
error code, and recovers the request id whenever the payload carries a usable
one so the caller can still be answered.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

from misp_mcp.protocol.errors import ErrorCategory, McpError, make_error

# Maximum message size (1 MB)
MAX_MESSAGE_SIZE = 1_048_576

JSONRPC_VERSION = "2.0"

RequestId = Union[int, str, None]

_NO_ID = object()


class MessageDecodeError(McpError):
    """Raised when an inbound frame cannot be decoded into a message."""

    category = ErrorCategory.PARSE_ERROR

    def __init__(
        self,
        category: ErrorCategory,
        message: str,
        request_id: Any = _NO_ID,
    ) -> None:
        """Initialize the error.

        Args:
            category: One of TRANSPORT_ERROR, PARSE_ERROR or INVALID_REQUEST.
            message: Human-readable error message.
            request_id: Id recovered from the payload, if any.
        """
        super().__init__(message, category=category)
        self._request_id = request_id

    @property
    def has_request_id(self) -> bool:
        """Whether an id (possibly null) was recovered from the payload."""
        return self._request_id is not _NO_ID

    @property
    def request_id(self) -> RequestId:
        """The recovered id, or None when nothing was recovered."""
        return None if self._request_id is _NO_ID else self._request_id


@dataclass
class JsonRpcRequest:
    """Represents a JSON-RPC request (has id)."""

    id: RequestId
    method: str
    params: dict[str, Any] | list[Any] | None = None


@dataclass
class JsonRpcNotification:
    """Represents a JSON-RPC notification (no id)."""

    method: str
    params: dict[str, Any] | list[Any] | None = None


@dataclass
class JsonRpcResponse:
    """Represents a JSON-RPC response: exactly one of result or error."""

    id: RequestId
    result: Any = None
    error: dict[str, Any] | None = None

    @property
    def is_error(self) -> bool:
        """Check whether this is an error response."""
        return self.error is not None


Message = Union[JsonRpcRequest, JsonRpcNotification, JsonRpcResponse]


def _is_valid_id(value: Any) -> bool:
    # bool is a subclass of int but never a valid id
    if isinstance(value, bool):
        return False
    return value is None or isinstance(value, (int, str))


def _decode_text(raw: bytes | str) -> str:
    # Check message size before parsing to prevent DoS
    if len(raw) > MAX_MESSAGE_SIZE:
        raise MessageDecodeError(
            ErrorCategory.TRANSPORT_ERROR,
            f"Message too large: {len(raw)} bytes exceeds {MAX_MESSAGE_SIZE} limit",
        )
    if isinstance(raw, str):
        return raw

    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MessageDecodeError(
            ErrorCategory.TRANSPORT_ERROR, f"Frame is not valid UTF-8: {e}"
        ) from e


def parse_message(raw: bytes | str) -> Message:
    """Parse a JSON-RPC message from one frame.

    Args:
        raw: Frame payload, as bytes or already-decoded text.

    Returns:
        Parsed request, notification or response.

    Raises:
        MessageDecodeError: If the frame is not a valid JSON-RPC message.
    """
    text = _decode_text(raw)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MessageDecodeError(ErrorCategory.PARSE_ERROR, f"Parse error: {e}") from e

    if isinstance(data, list):
        raise MessageDecodeError(
            ErrorCategory.INVALID_REQUEST, "Invalid Request: batch messages are not supported"
        )
    if not isinstance(data, dict):
        raise MessageDecodeError(
            ErrorCategory.INVALID_REQUEST, "Invalid Request: message must be an object"
        )

    has_id = "id" in data
    msg_id = data.get("id")
    if has_id and not _is_valid_id(msg_id):
        # An id of the wrong type cannot be echoed back, so nothing is recovered
        raise MessageDecodeError(
            ErrorCategory.INVALID_REQUEST, "Invalid Request: id must be integer, string or null"
        )
    recovered = msg_id if has_id else _NO_ID

    if data.get("jsonrpc") != JSONRPC_VERSION:
        raise MessageDecodeError(
            ErrorCategory.INVALID_REQUEST, "Invalid Request: jsonrpc must be '2.0'", recovered
        )

    if "method" in data:
        method = data["method"]
        if not isinstance(method, str) or not method:
            raise MessageDecodeError(
                ErrorCategory.INVALID_REQUEST, "Invalid Request: method must be a string", recovered
            )

        params = data.get("params")
        if params is not None and not isinstance(params, (dict, list)):
            raise MessageDecodeError(
                ErrorCategory.INVALID_REQUEST,
                "Invalid Request: params must be an object or array",
                recovered,
            )

        if has_id:
            return JsonRpcRequest(id=msg_id, method=method, params=params)
        return JsonRpcNotification(method=method, params=params)

    has_result = "result" in data
    has_error = "error" in data
    if not has_result and not has_error:
        raise MessageDecodeError(
            ErrorCategory.INVALID_REQUEST, "Invalid Request: method must be a string", recovered
        )
    if has_result and has_error:
        raise MessageDecodeError(
            ErrorCategory.INVALID_REQUEST,
            "Invalid Request: response cannot carry both result and error",
            recovered,
        )
    if not has_id:
        raise MessageDecodeError(
            ErrorCategory.INVALID_REQUEST, "Invalid Request: response must carry an id"
        )

    if has_error:
        error = data["error"]
        if (
            not isinstance(error, dict)
            or isinstance(error.get("code"), bool)
            or not isinstance(error.get("code"), int)
            or not isinstance(error.get("message"), str)
        ):
            raise MessageDecodeError(
                ErrorCategory.INVALID_REQUEST,
                "Invalid Request: error must have an integer code and a string message",
                recovered,
            )
        return JsonRpcResponse(id=msg_id, error=error)

    return JsonRpcResponse(id=msg_id, result=data["result"])


def _dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def format_request(
    msg_id: RequestId, method: str, params: dict[str, Any] | list[Any] | None = None
) -> str:
    """Format a JSON-RPC request.

    Args:
        msg_id: Request ID.
        method: Method name.
        params: Optional parameters.

    Returns:
        JSON string.
    """
    request: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": msg_id, "method": method}
    if params is not None:
        request["params"] = params
    return _dumps(request)


def format_response(msg_id: RequestId, result: Any) -> str:
    """Format a successful JSON-RPC response.

    Args:
        msg_id: Request ID to echo back.
        result: Result payload.

    Returns:
        JSON string.

    Raises:
        TypeError: If the result is not JSON-serializable.
        ValueError: If the result contains circular references.
    """
    response = {
        "jsonrpc": JSONRPC_VERSION,
        "id": msg_id,
        "result": result,
    }
    return _dumps(response)


def format_error(
    msg_id: RequestId,
    code: int,
    message: str,
    data: Any | None = None,
) -> str:
    """Format a JSON-RPC error response.

    Args:
        msg_id: Request ID (or None when it could not be determined).
        code: Error code.
        message: Error message.
        data: Optional error data.

    Returns:
        JSON string.
    """
    response = {
        "jsonrpc": JSONRPC_VERSION,
        "id": msg_id,
        "error": make_error(code, message, data),
    }
    return _dumps(response)


def format_error_object(msg_id: RequestId, error: dict[str, Any]) -> str:
    """Format a JSON-RPC error response from a ready-made error object."""
    return format_error(msg_id, error["code"], error["message"], error.get("data"))


def format_notification(
    method: str, params: dict[str, Any] | list[Any] | None = None
) -> str:
    """Format a JSON-RPC notification.

    Args:
        method: Notification method name.
        params: Optional parameters.

    Returns:
        JSON string.
    """
    notification: dict[str, Any] = {
        "jsonrpc": JSONRPC_VERSION,
        "method": method,
    }
    if params is not None:
        notification["params"] = params

    return _dumps(notification)


def encode_message(message: Message) -> bytes:
    """Encode any decoded message back into a UTF-8 frame payload.

    Args:
        message: Request, notification or response.

    Returns:
        Frame payload bytes, without framing.
    """
    if isinstance(message, JsonRpcRequest):
        text = format_request(message.id, message.method, message.params)
    elif isinstance(message, JsonRpcNotification):
        text = format_notification(message.method, message.params)
    elif message.is_error:
        text = format_error_object(message.id, message.error)
    else:
        text = format_response(message.id, message.result)
    return text.encode("utf-8")
