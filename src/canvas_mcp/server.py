"""MCP Server - request dispatch.

Integrates the lifecycle, tool registry, validator, cache and error
mapping into a complete MCP server.

Control messages (initialize, ping, tools/list, shutdown, cancellation)
are answered in arrival order by the read loop. Each tools/call runs as
its own asyncio task so a slow Canvas request never holds up the others.
Finished responses go through a queue to a single writer task.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

from canvas_mcp import __version__
from canvas_mcp.cache import ResponseCache, make_key
from canvas_mcp.config import ServerSettings
from canvas_mcp.diagnostics import null_logger, sanitize_arguments
from canvas_mcp.errors import ParameterValidationError, ToolTimeoutError, map_exception
from canvas_mcp.plugins.base import PluginBase
from canvas_mcp.plugins.registry import ToolDescriptor, ToolRegistry
from canvas_mcp.protocol.identifier import Identifier, IdentifierError
from canvas_mcp.protocol.jsonrpc import (
    ERROR_NAMES,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    format_error,
    format_response,
    parse_message,
)
from canvas_mcp.protocol.lifecycle import LifecycleManager, LifecycleState, ProtocolError
from canvas_mcp.protocol.transport import StdioTransport, TransportError
from canvas_mcp.protocol.validation import ParameterValidator, canonical_arguments

SERVER_NAME = "canvas-mcp"

REQUEST_METHODS = frozenset({"initialize", "ping", "tools/list", "tools/call", "shutdown"})

# Exit codes
EXIT_OK = 0
EXIT_TRANSPORT_FAILURE = 1


@dataclass
class PendingCall:
    """A validated tools/call waiting to run."""

    request: JsonRpcRequest
    descriptor: ToolDescriptor
    arguments: dict[str, Any]
    cache_key: str

    @property
    def identifier(self) -> Identifier:
        return self.request.identifier


def _json_default(value: Any) -> Any:
    if isinstance(value, Identifier):
        return value.canonical
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def tool_result(data: Any) -> dict[str, Any]:
    """Wrap handler data as an MCP tools/call result.

    Keys are sorted so identical data always serializes to identical text.
    Identifiers are written in their canonical text form, so "108367" and
    108367 produce the same text.

    Raises:
        TypeError: If data holds values that cannot be encoded as JSON.
    """
    text = json.dumps(data, sort_keys=True, indent=2, default=_json_default)
    return {
        "content": [{"type": "text", "text": text}],
        "isError": False,
    }


class MCPServer:
    """MCP Server implementation.

    Provides a complete MCP server that handles:
    - Lifecycle management (initialize/shutdown)
    - Tool listing and concurrent tool execution
    - Argument validation and identifier coercion
    - Response caching and error mapping
    """

    def __init__(
        self,
        registry: ToolRegistry | None = None,
        settings: ServerSettings | None = None,
        cache: ResponseCache | None = None,
        logger: logging.Logger | None = None,
        instructions: str | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            registry: Tool registry (a new empty one by default).
            settings: Server tuning (defaults if omitted).
            cache: Response cache (built from settings if omitted).
            logger: Diagnostic logger (discards output if omitted).
            instructions: Text returned to clients in the initialize result.
        """
        self._settings = settings or ServerSettings()
        self._registry = registry or ToolRegistry()
        self._cache = cache or ResponseCache(
            max_entries=self._settings.cache_max_entries,
            default_ttl=self._settings.cache_default_ttl,
        )
        self._log = logger or null_logger()
        self._instructions = instructions
        self._validator = ParameterValidator()
        self._lifecycle = LifecycleManager(
            server_info={"name": SERVER_NAME, "version": __version__}
        )

        self._in_flight: dict[Identifier, asyncio.Task] = {}
        self._exit_requested = False
        self._outbox: asyncio.Queue | None = None
        self._inbox: asyncio.Queue | None = None

    @property
    def state(self) -> LifecycleState:
        return self._lifecycle.state

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def in_flight(self) -> int:
        """Number of tool calls currently running."""
        return len(self._in_flight)

    def register_plugin(self, plugin: PluginBase) -> None:
        """Register a plugin.

        Args:
            plugin: Plugin to register.
        """
        self._registry.register_plugin(plugin)

    def list_tools(self) -> list[dict[str, Any]]:
        """List all registered tools.

        Returns:
            List of tool definitions.
        """
        return self._registry.list_tools()

    # ------------------------------------------------------------------
    # Single-message handling
    # ------------------------------------------------------------------

    async def handle_message(self, raw_message: str) -> str | None:
        """Handle an incoming JSON-RPC message end to end.

        Args:
            raw_message: Raw JSON-RPC message string.

        Returns:
            Response string or None for notifications.
        """
        routed = self._route(raw_message)
        if isinstance(routed, PendingCall):
            return await self._run_call(routed)
        return routed

    def _route(self, raw_message: str) -> str | PendingCall | None:
        """Decode a frame and answer it, or hand back a tool call to run."""
        try:
            message = parse_message(raw_message)
        except JsonRpcError as e:
            self._log.warning("%s: %s", ERROR_NAMES.get(e.code, e.code), e.message)
            return format_error(e.request_id, e.code, e.message, e.data)

        if isinstance(message, JsonRpcNotification):
            self._handle_notification(message)
            return None
        return self._handle_request(message)

    def _handle_notification(self, notification: JsonRpcNotification) -> None:
        """Handle a notification (no response).

        Args:
            notification: The notification to handle.
        """
        method = notification.method
        params = notification.params or {}

        if method == "notifications/cancelled":
            self._cancel(params.get("requestId"), params.get("reason"))
        elif method in ("shutdown", "notifications/shutdown"):
            if self._lifecycle.state == LifecycleState.UNINITIALIZED:
                self._log.debug("Ignoring %s before initialization", method)
            else:
                self._begin_shutdown()
        elif method == "exit":
            self._lifecycle.handle_shutdown()
            self._exit_requested = True
        elif method == "notifications/initialized":
            self._log.debug("Client confirmed initialization")
        else:
            self._log.debug("Ignoring notification %s", method)

    def _cancel(self, request_id: Any, reason: Any) -> None:
        """Cancel the in-flight call with the given id, if any."""
        try:
            identifier = Identifier.parse(request_id)
        except IdentifierError:
            self._log.debug("Ignoring cancellation with invalid requestId %r", request_id)
            return

        task = self._in_flight.get(identifier)
        if task is None:
            self._log.debug("No in-flight call %s to cancel", identifier)
            return
        self._log.info("Cancelling call %s (%s)", identifier, reason or "no reason given")
        task.cancel()

    def _handle_request(self, request: JsonRpcRequest) -> str | PendingCall:
        """Answer a request, or validate a tool call for later execution."""
        method = request.method
        params = request.params or {}
        msg_id = request.id

        if method not in REQUEST_METHODS:
            return format_error(msg_id, METHOD_NOT_FOUND, f"Method not found: {method}")

        # Initialize is special - the only request allowed before the handshake
        if method == "initialize":
            try:
                self._registry.freeze()
                result = self._lifecycle.handle_initialize(params, self._build_instructions())
            except ProtocolError as e:
                return format_error(msg_id, INVALID_REQUEST, str(e))
            self._log.info(
                "Initialized for client %s (protocol %s, %d tools)",
                (self._lifecycle.connected_client or {}).get("name", "unknown"),
                result["protocolVersion"],
                len(self._registry),
            )
            return format_response(msg_id, result)

        if self._lifecycle.state == LifecycleState.UNINITIALIZED:
            return format_error(msg_id, INVALID_REQUEST, "Server not initialized")

        if method == "ping":
            return format_response(msg_id, {})

        if method == "shutdown":
            self._begin_shutdown()
            return format_response(msg_id, {})

        # All other methods require ready state
        try:
            self._lifecycle.require_ready()
        except ProtocolError as e:
            return format_error(msg_id, INVALID_REQUEST, str(e))

        if method == "tools/list":
            return format_response(msg_id, {"tools": self._registry.list_tools()})

        return self._prepare_call(request, params)

    def _begin_shutdown(self) -> None:
        self._lifecycle.handle_shutdown()
        self._log.info("Shutdown requested; %d call(s) in flight", len(self._in_flight))
        self._close_if_drained()

    def _close_if_drained(self) -> None:
        """Move to CLOSED once shutdown has begun and no call is running."""
        if self._lifecycle.state == LifecycleState.SHUTTING_DOWN and not self._in_flight:
            self._lifecycle.close()
            self._log.info("All calls drained, connection closed")

    def _build_instructions(self) -> str:
        lines = [self._instructions] if self._instructions else []
        lines.append(f"{len(self._registry)} tools available.")
        return "\n".join(lines)

    def _prepare_call(self, request: JsonRpcRequest, params: dict[str, Any]) -> str | PendingCall:
        """Look up and validate a tools/call request."""
        msg_id = request.id
        name = params.get("name")
        if not isinstance(name, str) or not name:
            return format_error(
                msg_id,
                INVALID_PARAMS,
                "Missing tool name",
                {"field": "name", "expected": "string", "actual": type(name).__name__},
            )

        descriptor = self._registry.lookup(name)
        if descriptor is None:
            return format_error(msg_id, METHOD_NOT_FOUND, f"Tool not found: {name}", {"tool": name})

        try:
            arguments = self._validator.validate(
                name, descriptor.input_schema, params.get("arguments")
            )
        except ParameterValidationError as e:
            error = map_exception(e)
            self._log.info("Rejected arguments for %s: %s", name, error.message)
            return format_error(msg_id, error.code, error.message, error.data)

        cache_key = make_key(name, canonical_arguments(arguments))
        return PendingCall(request, descriptor, arguments, cache_key)

    async def _run_call(self, call: PendingCall) -> str:
        """Execute a tool call, consulting the cache first.

        Always returns exactly one response; handler failures are mapped
        to protocol errors rather than raised. Cancellation propagates.
        """
        descriptor = call.descriptor
        name = descriptor.name
        msg_id = call.request.id
        started = time.monotonic()

        self._log.info(
            "Call %s %s %s",
            call.identifier,
            name,
            sanitize_arguments(canonical_arguments(call.arguments)),
        )

        if descriptor.cacheable:
            cached = self._cache.get(call.cache_key)
            if cached is not None:
                self._log.debug("Cache hit for %s (%s)", name, call.identifier)
                return format_response(msg_id, cached)

        timeout = self._settings.get_timeout(name, descriptor.definition.timeout)
        try:
            data = await asyncio.wait_for(descriptor.invoke(call.arguments), timeout)
            result = tool_result(data)
        except TimeoutError:
            error = map_exception(ToolTimeoutError(name, timeout))
            return self._call_failed(call, error, started)
        except Exception as e:
            self._log.debug("Handler %s raised", name, exc_info=True)
            return self._call_failed(call, map_exception(e), started)

        if descriptor.cacheable:
            self._cache.put(
                call.cache_key, result, self._settings.get_ttl(name, descriptor.definition.ttl)
            )

        self._log.info(
            "Call %s %s succeeded in %.1fms",
            call.identifier,
            name,
            (time.monotonic() - started) * 1000,
        )
        return format_response(msg_id, result)

    def _call_failed(self, call: PendingCall, error: JsonRpcError, started: float) -> str:
        self._log.warning(
            "Call %s %s failed in %.1fms: %s %s",
            call.identifier,
            call.descriptor.name,
            (time.monotonic() - started) * 1000,
            ERROR_NAMES.get(error.code, error.code),
            error.message,
        )
        return format_error(call.request.id, error.code, error.message, error.data)

    # ------------------------------------------------------------------
    # Concurrent serving
    # ------------------------------------------------------------------

    async def serve(self, transport: StdioTransport) -> int:
        """Run the read loop until end of input, exit, or transport failure.

        Args:
            transport: Framed stdio transport.

        Returns:
            Process exit code.
        """
        loop = asyncio.get_running_loop()
        self._inbox = asyncio.Queue()
        self._outbox = asyncio.Queue()
        exit_code = EXIT_OK

        self._start_reader(transport, loop, self._inbox)
        writer = asyncio.create_task(self._write_loop(transport), name="canvas-mcp-writer")

        while not self._exit_requested:
            item = await self._inbox.get()
            if item is None:
                self._log.info("End of input, shutting down")
                break
            if isinstance(item, TransportError):
                self._log.error("Transport failure: %s", item)
                exit_code = EXIT_TRANSPORT_FAILURE
                break
            self._dispatch(item)

        if exit_code == EXIT_OK:
            self._lifecycle.handle_shutdown()
            await self._drain()
        else:
            for task in list(self._in_flight.values()):
                task.cancel()
            await self._drain()

        self._outbox.put_nowait(None)
        await writer
        self._lifecycle.close()
        transport.close()
        return exit_code

    def _start_reader(
        self, transport: StdioTransport, loop: asyncio.AbstractEventLoop, inbox: asyncio.Queue
    ) -> threading.Thread:
        """Read frames on a daemon thread and feed them to the event loop.

        The thread stops after end of input or a read failure.
        """

        def read_frames() -> None:
            while True:
                try:
                    item: str | TransportError | None = transport.read_message()
                except TransportError as e:
                    item = e
                try:
                    loop.call_soon_threadsafe(inbox.put_nowait, item)
                except RuntimeError:
                    return  # event loop already closed
                if not isinstance(item, str):
                    return

        thread = threading.Thread(target=read_frames, name="canvas-mcp-reader", daemon=True)
        thread.start()
        return thread

    def _dispatch(self, raw_message: str) -> None:
        """Route one frame: answer it now or start a task for it."""
        try:
            routed = self._route(raw_message)
        except Exception as e:
            self._log.exception("Unexpected failure routing a frame")
            error = map_exception(e)
            self._send(format_error(None, error.code, error.message, error.data))
            return
        if routed is None:
            return
        if isinstance(routed, str):
            self._send(routed)
            return

        identifier = routed.identifier
        if identifier in self._in_flight:
            self._send(
                format_error(
                    routed.request.id,
                    INVALID_REQUEST,
                    f"Duplicate request id: {identifier}",
                )
            )
            return

        task = asyncio.create_task(self._run_and_reply(routed), name=f"call-{identifier}")
        self._in_flight[identifier] = task
        task.add_done_callback(lambda t, key=identifier: self._forget(key, t))

    def _forget(self, identifier: Identifier, task: asyncio.Task) -> None:
        if self._in_flight.get(identifier) is task:
            del self._in_flight[identifier]
        self._close_if_drained()

    async def _run_and_reply(self, call: PendingCall) -> None:
        try:
            response = await self._run_call(call)
        except asyncio.CancelledError:
            self._log.info("Call %s cancelled; no response sent", call.identifier)
            raise
        except Exception as e:
            self._log.exception("Unexpected failure in call %s", call.identifier)
            error = map_exception(e)
            response = format_error(call.request.id, error.code, error.message, error.data)
        self._send(response)

    def _send(self, frame: str) -> None:
        if self._outbox is not None:
            self._outbox.put_nowait(frame)

    async def _write_loop(self, transport: StdioTransport) -> None:
        """Single owner of the output stream."""
        assert self._outbox is not None
        while True:
            frame = await self._outbox.get()
            if frame is None:
                return
            try:
                await asyncio.to_thread(transport.write_message, frame)
            except TransportError as e:
                if self._inbox is not None:
                    self._inbox.put_nowait(e)
                return

    async def _drain(self) -> None:
        """Wait for every in-flight call to finish."""
        while self._in_flight:
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)

    async def close(self) -> None:
        """Close the server and clean up plugin resources."""
        for plugin in self._registry.plugins:
            await plugin.cleanup()
