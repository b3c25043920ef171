"""MCP Server - request dispatch and session loop.

Integrates the protocol components into a complete MCP server. A single
read loop decodes one frame at a time and answers lifecycle and listing
requests inline; every accepted tools/call runs as its own asyncio task and
writes its response whenever it completes, so responses may leave in a
different order than requests arrived. Callers correlate them by id.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Protocol

from misp_mcp.audit import AuditLogger
from misp_mcp.plugins.base import PluginBase, ToolDescriptor, ToolResult
from misp_mcp.plugins.registry import ToolRegistry
from misp_mcp.protocol.errors import (
    ErrorCategory,
    InvalidParamsError,
    McpError,
    MethodNotFoundError,
    ProtocolError,
    ToolError,
    error_for_exception,
)
from misp_mcp.protocol.jsonrpc import (
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    MessageDecodeError,
    RequestId,
    format_error,
    format_error_object,
    format_response,
    parse_message,
)
from misp_mcp.protocol.lifecycle import LifecycleManager
from misp_mcp.protocol.tools import ToolsHandler, parse_call_params
from misp_mcp.protocol.transport import TransportError, TransportWriteError

logger = logging.getLogger(__name__)

# Process exit codes
EXIT_OK = 0
EXIT_TRANSPORT_FAILURE = 1
EXIT_STARTUP_FAILURE = 2

_STOP = object()


class Transport(Protocol):
    """What the server needs from a duplex byte stream."""

    async def read_frame(self) -> bytes | None: ...

    async def write_frame(self, payload: bytes) -> None: ...


class MCPServer:
    """MCP Server implementation.

    Provides a complete MCP server that handles:
    - Lifecycle management (initialize, shutdown, end of input)
    - Tool listing and concurrent tool execution
    - Error mapping for every request that is owed a response
    """

    def __init__(
        self,
        server_info: dict[str, str] | None = None,
        tool_timeout: float | None = 60.0,
        drain_timeout: float = 30.0,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            server_info: Name and version reported to clients.
            tool_timeout: Seconds a single tool call may run, or None for no limit.
            drain_timeout: Seconds to wait for in-flight calls at shutdown.
            audit_logger: Optional audit trail for tool calls.
        """
        self._registry = ToolRegistry()
        self._lifecycle = (
            LifecycleManager(server_info=server_info) if server_info else LifecycleManager()
        )
        self._tools_handler = ToolsHandler(self._registry, timeout=tool_timeout)
        self._drain_timeout = drain_timeout
        self._audit = audit_logger

        self._transport: Transport | None = None
        self._in_flight: dict[RequestId, asyncio.Task[None]] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._stop = asyncio.Event()
        self._pending_read: asyncio.Future[bytes | None] | None = None
        self._drain_deadline: float | None = None
        self._write_failed = False

    @property
    def lifecycle(self) -> LifecycleManager:
        """Session lifecycle state."""
        return self._lifecycle

    @property
    def registry(self) -> ToolRegistry:
        """The tool registry."""
        return self._registry

    @property
    def in_flight(self) -> frozenset[RequestId]:
        """Ids of tool calls currently running."""
        return frozenset(self._in_flight)

    def register_plugin(self, plugin: PluginBase) -> None:
        """Register a plugin.

        Args:
            plugin: Plugin to register.

        Raises:
            RegistryError: If a tool name is taken or the server is already serving.
        """
        self._registry.register_plugin(plugin)
        logger.debug("Registered plugin %s %s", plugin.name, plugin.version)

    def register_tool(self, descriptor: ToolDescriptor) -> None:
        """Register a single tool.

        Raises:
            RegistryError: If the name is taken or the server is already serving.
        """
        self._registry.register(descriptor)

    def list_tools(self) -> list[dict[str, Any]]:
        """List all registered tools.

        Returns:
            List of tool definitions.
        """
        return self._registry.list_tools()

    async def serve(self, transport: Transport) -> int:
        """Run the session until end of input, shutdown, or a write failure.

        Args:
            transport: Duplex frame transport.

        Returns:
            Process exit code.
        """
        self._transport = transport
        self._registry.freeze()
        logger.info("Serving %d tools", len(self._registry))

        try:
            while True:
                try:
                    frame = await self._next_frame()
                except TransportError as e:
                    logger.warning("Discarding unreadable input: %s", e)
                    continue

                if frame is _STOP:
                    break
                if frame is None:
                    logger.info("End of input, shutting down")
                    self._begin_shutdown()
                    break

                await self.handle_frame(frame)

            await self._drain()
        finally:
            await self._cancel_pending_read()
            await self._cleanup_plugins()
            self._lifecycle.terminate()

        if self._write_failed:
            return EXIT_TRANSPORT_FAILURE
        logger.info("Session ended")
        return EXIT_OK

    async def handle_frame(self, frame: bytes | str) -> None:
        """Decode and dispatch one inbound frame.

        Args:
            frame: Frame payload without framing.
        """
        try:
            message = parse_message(frame)
        except MessageDecodeError as e:
            if e.has_request_id:
                logger.warning("Rejecting malformed request %r: %s", e.request_id, e.message)
                await self._send_error(e.request_id, e.to_error())
            else:
                # No id to answer to, so nothing is sent
                logger.warning("Discarding malformed frame: %s", e.message)
            return

        if isinstance(message, JsonRpcResponse):
            logger.debug("Ignoring unsolicited response for id %r", message.id)
        elif isinstance(message, JsonRpcNotification):
            self._handle_notification(message)
        else:
            await self._handle_request(message)

    def _handle_notification(self, notification: JsonRpcNotification) -> None:
        method = notification.method
        if method == "notifications/initialized":
            self._lifecycle.handle_initialized()
        elif method in ("notifications/shutdown", "exit"):
            logger.info("Shutdown requested by client")
            self._begin_shutdown()
        else:
            logger.debug("Ignoring notification %s", method)

    async def _handle_request(self, request: JsonRpcRequest) -> None:
        try:
            if request.method == "tools/call":
                self._start_tool_call(request)
                return
            result = self._dispatch(request)
        except McpError as e:
            logger.info("Request %r (%s) failed: %s", request.id, request.method, e.message)
            await self._send_error(request.id, e.to_error())
            return
        except Exception as e:
            logger.exception("Internal error handling %s", request.method)
            await self._send_error(request.id, error_for_exception(e))
            return

        await self._send_result(request.id, result)

    def _dispatch(self, request: JsonRpcRequest) -> Any:
        """Handle every request method except tools/call.

        Raises:
            McpError: If the request is invalid for the current state.
        """
        method = request.method

        if method == "initialize":
            result = self._lifecycle.handle_initialize(_params_object(request.params))
            client = self._lifecycle.client_info or {}
            logger.info(
                "Initialized protocol %s for client %s %s",
                self._lifecycle.protocol_version,
                client.get("name", "unknown"),
                client.get("version", ""),
            )
            return result

        # All other methods require a completed handshake
        self._lifecycle.require_initialized()

        if method == "ping":
            return {}
        if method == "tools/list":
            return self._tools_handler.handle_list().to_dict()
        if method == "shutdown":
            logger.info("Shutdown requested by client")
            self._begin_shutdown()
            return {}

        raise MethodNotFoundError(f"Method not found: {method}", data={"method": method})

    def _start_tool_call(self, request: JsonRpcRequest) -> None:
        """Validate a tools/call request and schedule its execution.

        Raises:
            McpError: If the call cannot be accepted; nothing is scheduled.
        """
        self._lifecycle.require_accepting_calls()
        call = parse_call_params(request.params)
        tool = self._tools_handler.resolve(call.name)

        if request.id in self._in_flight:
            raise ProtocolError(
                f"Duplicate request id: {request.id!r} is already in flight",
                data={"id": request.id},
                category=ErrorCategory.DUPLICATE_REQUEST_ID,
            )

        task = asyncio.create_task(
            self._run_tool_call(request.id, tool, call.arguments),
            name=f"tools/call {tool.name} id={request.id!r}",
        )
        self._in_flight[request.id] = task
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    async def _run_tool_call(
        self, request_id: RequestId, tool: ToolDescriptor, arguments: dict[str, Any]
    ) -> None:
        started = time.monotonic()
        result: ToolResult | None = None
        error: dict[str, Any] | None = None
        try:
            self._audit_request(request_id, tool.name, arguments)
            result = await self._tools_handler.handle_call(tool, arguments)
        except asyncio.CancelledError:
            logger.warning("Abandoned tool call %r (%s)", request_id, tool.name)
            self._audit_outcome(request_id, tool.name, "abandoned", started)
            raise
        except (McpError, ToolError) as e:
            logger.info("Tool %s failed for request %r: %s", tool.name, request_id, e)
            error = e.to_error()
        except Exception as e:
            logger.warning("Tool %s raised for request %r", tool.name, request_id, exc_info=True)
            error = error_for_exception(e, tool.name)
        finally:
            # Release the id before answering so the caller may reuse it
            self._in_flight.pop(request_id, None)

        if error is not None:
            self._audit_outcome(request_id, tool.name, "error", started, error["code"])
            await self._send_error(request_id, error)
        else:
            status = "tool_error" if result.is_error else "success"
            self._audit_outcome(request_id, tool.name, status, started)
            await self._send_result(request_id, result.to_dict())

    def _audit_request(
        self, request_id: RequestId, tool_name: str, arguments: dict[str, Any]
    ) -> None:
        if not self._audit:
            return
        try:
            self._audit.log_request(request_id, tool_name, arguments)
        except (OSError, ValueError):
            logger.exception("Could not audit request %r (%s)", request_id, tool_name)

    def _audit_outcome(
        self,
        request_id: RequestId,
        tool_name: str,
        status: str,
        started: float,
        error_code: int | None = None,
    ) -> None:
        if not self._audit:
            return
        duration_ms = (time.monotonic() - started) * 1000
        try:
            self._audit.log_response(request_id, tool_name, status, duration_ms, error_code)
        except (OSError, ValueError):
            logger.exception("Could not audit outcome of request %r (%s)", request_id, tool_name)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Tool call task failed", exc_info=task.exception())
        self._maybe_finish_shutdown()

    def _begin_shutdown(self) -> None:
        if self._lifecycle.begin_shutdown():
            self._drain_deadline = asyncio.get_running_loop().time() + self._drain_timeout
            logger.info("Shutting down with %d tool call(s) in flight", len(self._tasks))
        self._maybe_finish_shutdown()

    def _maybe_finish_shutdown(self) -> None:
        if self._lifecycle.is_shutting_down and not self._tasks:
            self._stop.set()

    async def _next_frame(self) -> Any:
        """Wait for the next frame, end of input, or a reason to stop reading."""
        if self._pending_read is None:
            self._pending_read = asyncio.ensure_future(self._transport.read_frame())

        timeout = None
        if self._drain_deadline is not None:
            timeout = max(0.0, self._drain_deadline - asyncio.get_running_loop().time())

        stop_wait = asyncio.ensure_future(self._stop.wait())
        try:
            done, _ = await asyncio.wait(
                {self._pending_read, stop_wait},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            stop_wait.cancel()

        if self._stop.is_set() or self._pending_read not in done:
            return _STOP

        read, self._pending_read = self._pending_read, None
        return read.result()

    async def _cancel_pending_read(self) -> None:
        if self._pending_read is None:
            return
        self._pending_read.cancel()
        try:
            await self._pending_read
        except (asyncio.CancelledError, TransportError):
            pass
        self._pending_read = None

    async def _drain(self) -> None:
        """Wait for running tool calls, bounded by the drain timeout."""
        if not self._tasks:
            return

        pending: set[asyncio.Task[None]] = set(self._tasks)
        if not self._write_failed:
            loop = asyncio.get_running_loop()
            deadline = self._drain_deadline or loop.time() + self._drain_timeout
            timeout = max(0.0, deadline - loop.time())
            logger.info("Waiting up to %.1fs for %d tool call(s)", timeout, len(pending))
            _, pending = await asyncio.wait(pending, timeout=timeout)

        if pending:
            if not self._write_failed:
                logger.warning("Drain timeout reached, abandoning %d tool call(s)", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def _cleanup_plugins(self) -> None:
        for plugin in self._registry.plugins:
            try:
                await plugin.cleanup()
            except Exception:
                logger.exception("Cleanup failed for plugin %s", plugin.name)

    async def _send_result(self, request_id: RequestId, result: Any) -> None:
        try:
            text = format_response(request_id, result)
        except (TypeError, ValueError) as e:
            logger.error("Result for request %r is not serializable: %s", request_id, e)
            category = ErrorCategory.SERIALIZATION_ERROR
            text = format_error(request_id, category.code, f"{category.default_message}: {e}")
        await self._send(text)

    async def _send_error(self, request_id: RequestId, error: dict[str, Any]) -> None:
        await self._send(format_error_object(request_id, error))

    async def _send(self, text: str) -> None:
        if self._write_failed:
            return
        try:
            await self._transport.write_frame(text.encode("utf-8"))
        except TransportWriteError as e:
            logger.error("Output stream failed, terminating session: %s", e)
            self._write_failed = True
            self._stop.set()


def _params_object(params: Any) -> dict[str, Any]:
    """Normalise request params for methods that take named parameters.

    Raises:
        InvalidParamsError: If params are positional.
    """
    if params is None:
        return {}
    if not isinstance(params, dict):
        raise InvalidParamsError("params must be an object")
    return params
