"""Session phases of an MCP connection.

Covers the initialize handshake and version negotiation, then the move from
serving to draining to finished. Phase changes happen only through the methods below, each
a function of the current phase and the message received.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from misp_mcp.protocol.errors import ErrorCategory, InvalidParamsError, ProtocolError

# Supported MCP protocol versions (oldest first)
SUPPORTED_PROTOCOL_VERSIONS = ["2024-11-05", "2025-03-26", "2025-06-18"]
# Advertised when a client asks for nothing in particular
MCP_PROTOCOL_VERSION = "2024-11-05"


class LifecycleState(Enum):
    """Phase of the session."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


@dataclass
class LifecycleManager:
    """Session phase plus what the client sent during the handshake."""

    server_info: dict[str, str] = field(
        default_factory=lambda: {"name": "misp-mcp", "version": "0.1.0"}
    )
    capabilities: dict[str, Any] = field(default_factory=lambda: {"tools": {"listChanged": False}})
    state: LifecycleState = LifecycleState.UNINITIALIZED
    protocol_version: str | None = None
    client_info: dict[str, Any] | None = None
    client_capabilities: dict[str, Any] | None = None
    client_initialized: bool = False

    @property
    def is_ready(self) -> bool:
        """True once initialize succeeded and before shutdown begins."""
        return self.state == LifecycleState.READY

    @property
    def is_shutting_down(self) -> bool:
        """True once new tool calls are refused."""
        return self.state in (LifecycleState.SHUTTING_DOWN, LifecycleState.TERMINATED)

    def require_initialized(self) -> None:
        """Assert that the handshake has completed.

        Raises:
            ProtocolError: If initialize has not succeeded yet.
        """
        if self.state == LifecycleState.UNINITIALIZED:
            raise ProtocolError(category=ErrorCategory.NOT_INITIALIZED)

    def require_accepting_calls(self) -> None:
        """Assert that new tool calls may start.

        Raises:
            ProtocolError: If not initialized or shutting down.
        """
        self.require_initialized()
        if self.is_shutting_down:
            raise ProtocolError(category=ErrorCategory.SHUTTING_DOWN)

    def handle_initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        """Negotiate the protocol version and enter the ready phase.

        Args:
            params: The `initialize` params object.

        Returns:
            Result object for the initialize response.

        Raises:
            ProtocolError: If already initialized.
            InvalidParamsError: If the requested version is missing or unsupported.
        """
        if self.state != LifecycleState.UNINITIALIZED:
            raise ProtocolError(category=ErrorCategory.ALREADY_INITIALIZED)

        requested_version = params.get("protocolVersion")
        if not isinstance(requested_version, str):
            raise InvalidParamsError("Missing required parameter: protocolVersion")
        if requested_version not in SUPPORTED_PROTOCOL_VERSIONS:
            raise InvalidParamsError(
                f"Unsupported protocol version: {requested_version}",
                data={"supported": SUPPORTED_PROTOCOL_VERSIONS, "requested": requested_version},
            )

        client_info = params.get("clientInfo")
        capabilities = params.get("capabilities", {})
        if not isinstance(capabilities, dict):
            raise InvalidParamsError("capabilities must be an object")

        # Every supported version is served as requested
        self.protocol_version = requested_version
        self.client_info = client_info if isinstance(client_info, dict) else None
        self.client_capabilities = capabilities
        self.state = LifecycleState.READY

        return {
            "protocolVersion": self.protocol_version,
            "capabilities": self.capabilities,
            "serverInfo": self.server_info,
        }

    def handle_initialized(self) -> None:
        """Note that the client confirmed the handshake."""
        self.client_initialized = True

    def begin_shutdown(self) -> bool:
        """Stop accepting tool calls.

        Returns:
            True if this call changed the state.
        """
        if self.is_shutting_down:
            return False
        self.state = LifecycleState.SHUTTING_DOWN
        return True

    def terminate(self) -> None:
        """Mark the session as finished."""
        self.state = LifecycleState.TERMINATED
