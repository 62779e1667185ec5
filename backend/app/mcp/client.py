"""MCP protocol client: handshake plus pipelined JSON-RPC requests over one transport."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from app.mcp.correlator import Correlator
from app.mcp.errors import (
    ConnectionClosed,
    EndOfStream,
    HandshakeFailed,
    MCPError,
    NotConnected,
    ReadError,
    RemoteError,
    RequestTimeout,
    ShutdownError,
)
from app.mcp.protocol_models import (
    METHOD_NOT_FOUND,
    HandshakeConfig,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    encode_error,
    encode_notification,
    encode_request,
    encode_result,
    error_code_and_message,
    parse_initialize_result,
    parse_messages,
)
from app.mcp.transports.base import MCPTransport
from app.mcp.transports.stdio import StdioTransport

logger = logging.getLogger(__name__)

EventSink = Callable[[str, dict[str, Any]], Awaitable[None]]
CloseCallback = Callable[["MCPClient"], Awaitable[None]]

_UNSET: Any = object()

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "emergency": logging.CRITICAL,
}


class ClientState(str, Enum):
    CONNECTING = "connecting"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    CLOSED = "closed"


@dataclass
class ClientOptions:
    handshake: HandshakeConfig = field(default_factory=HandshakeConfig)
    startup_timeout: float | None = 10.0
    request_timeout: float | None = 60.0
    grace_period: float = 2.0
    max_line_bytes: int = 16 * 1024 * 1024
    stderr_tail_lines: int = 50

    @classmethod
    def from_settings(cls, settings: Any) -> ClientOptions:
        return cls(
            handshake=HandshakeConfig(
                protocol_version=settings.mcp_protocol_version,
                client_name=settings.mcp_client_name,
                client_version=settings.mcp_client_version,
            ),
            startup_timeout=settings.mcp_startup_timeout_seconds or None,
            request_timeout=settings.mcp_request_timeout_seconds or None,
            grace_period=settings.mcp_shutdown_grace_seconds,
            max_line_bytes=settings.mcp_max_line_bytes,
            stderr_tail_lines=settings.mcp_stderr_tail_lines,
        )


class MCPClient:
    """One live connection to an MCP server.

    A single reader task owns the transport's read side and pushes each
    response into the future registered for its id, so any number of
    requests may be in flight at once. `shutdown()` (or the server going
    away) fails every outstanding request with `ConnectionClosed`.
    """

    def __init__(
        self,
        name: str,
        transport: MCPTransport,
        *,
        options: ClientOptions | None = None,
        on_event: EventSink | None = None,
        command: str | None = None,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self.name = name
        self.command = command
        self.args = list(args or [])
        # overrides only, kept so the registry can relaunch the same server
        self.env = dict(env or {})
        self._transport = transport
        self._options = options or ClientOptions()
        self._on_event = on_event
        self._correlator = Correlator()
        self._state = ClientState.CONNECTING
        self._reader_task: asyncio.Task | None = None
        self._close_callbacks: list[CloseCallback] = []
        self._shutdown_lock = asyncio.Lock()
        self.protocol_version: str | None = None
        self.server_info: dict[str, Any] = {}
        self.server_capabilities: dict[str, Any] = {}
        self.instructions: str | None = None

    @classmethod
    async def start(
        cls,
        name: str,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        *,
        options: ClientOptions | None = None,
        on_event: EventSink | None = None,
    ) -> MCPClient:
        """Spawn the server process and complete the initialize handshake."""
        options = options or ClientOptions()
        transport = await StdioTransport.start(
            command,
            args,
            env,
            grace_period=options.grace_period,
            max_line_bytes=options.max_line_bytes,
            stderr_tail_lines=options.stderr_tail_lines,
        )
        client = cls(
            name,
            transport,
            options=options,
            on_event=on_event,
            command=command,
            args=args,
            env=env,
        )
        await client.initialize()
        return client

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ClientState.READY

    @property
    def pid(self) -> int | None:
        return getattr(self._transport, "pid", None)

    @property
    def pending_count(self) -> int:
        return self._correlator.pending_count

    def add_close_callback(self, callback: CloseCallback) -> None:
        """Register a coroutine run once if the connection drops without `shutdown()`."""
        self._close_callbacks.append(callback)

    def snapshot(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "command": self.command,
            "args": list(self.args),
            "pid": self.pid,
            "protocolVersion": self.protocol_version,
            "serverInfo": dict(self.server_info),
            "capabilities": dict(self.server_capabilities),
            "pendingRequests": self._correlator.pending_count,
        }

    async def initialize(self) -> None:
        if self._state is not ClientState.CONNECTING:
            raise HandshakeFailed(f"{self.name}: handshake already performed")
        self._reader_task = asyncio.create_task(self._read_loop(), name=f"mcp-reader-{self.name}")
        try:
            result = await self._request(
                "initialize",
                self._options.handshake.initialize_params(),
                timeout=self._options.startup_timeout,
                require_ready=False,
            )
            init = parse_initialize_result(result)
            await self._transport.send(encode_notification("notifications/initialized"))
        except (MCPError, ValueError) as exc:
            detail = self._failure_detail(exc)
            await self._close(ConnectionClosed(f"Server {self.name} handshake failed"))
            raise HandshakeFailed(f"{self.name}: handshake failed: {detail}") from exc
        except BaseException:
            await self._close(ConnectionClosed(f"Server {self.name} handshake aborted"))
            raise
        self.protocol_version = init.protocol_version
        self.server_info = init.server_info
        self.server_capabilities = init.capabilities
        self.instructions = init.instructions
        if init.protocol_version and init.protocol_version != self._options.handshake.protocol_version:
            logger.info(
                "MCP server %s negotiated protocol %s (requested %s)",
                self.name,
                init.protocol_version,
                self._options.handshake.protocol_version,
            )
        self._state = ClientState.READY
        logger.info("MCP server %s ready: %s", self.name, self.server_info or "<no serverInfo>")

    async def list_tools(self) -> Any:
        return await self._request("tools/list")

    async def call_tool(self, name: str, arguments: Any = None) -> Any:
        # isError results are application-level failures and are returned as-is.
        params: dict[str, Any] = {"name": name}
        if arguments is not None:
            params["arguments"] = arguments
        return await self._request("tools/call", params)

    async def list_resources(self) -> Any:
        return await self._request("resources/list")

    async def read_resource(self, uri: str) -> Any:
        return await self._request("resources/read", {"uri": uri})

    async def ping(self) -> Any:
        return await self._request("ping")

    async def shutdown(self) -> None:
        """Fail pending requests, terminate the process. Safe to call repeatedly."""
        async with self._shutdown_lock:
            if self._state is ClientState.CLOSED:
                await self._stop_reader(cancel=False)
                return
            failure = await self._close(ConnectionClosed(f"Server {self.name} was disconnected"))
        if failure is not None:
            raise failure

    async def _request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = _UNSET,
        require_ready: bool = True,
    ) -> Any:
        if require_ready and self._state is not ClientState.READY:
            raise NotConnected(
                self.name, f"Server {self.name} is not ready (state: {self._state.value})"
            )
        if self._correlator.closed:
            raise ConnectionClosed(f"Server {self.name} connection is closed")
        if timeout is _UNSET:
            timeout = self._options.request_timeout
        req_id = self._correlator.next_id()
        future = self._correlator.register(req_id, method)
        try:
            await self._transport.send(encode_request(req_id, method, params))
        except BaseException:
            self._correlator.discard(req_id)
            raise
        try:
            if timeout is None:
                response: JSONRPCResponse = await future
            else:
                response = await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as e:
            self._correlator.discard(req_id)
            logger.warning("MCP request %s #%d to %s timed out", method, req_id, self.name)
            raise RequestTimeout(method, timeout) from e
        except asyncio.CancelledError:
            self._correlator.discard(req_id)
            raise
        if response.error is not None:
            code, message = error_code_and_message(response.error)
            raise RemoteError(code, message, response.error.get("data"))
        return response.result

    async def _read_loop(self) -> None:
        error = ConnectionClosed(f"Server {self.name} closed the connection")
        try:
            while True:
                line = await self._transport.receive()
                if not line.strip():
                    continue
                try:
                    messages = parse_messages(line)
                except (ValueError, RecursionError) as e:
                    logger.warning("Dropping malformed frame from %s: %s", self.name, e)
                    continue
                for message in messages:
                    try:
                        await self._dispatch(message)
                    except MCPError as e:
                        logger.warning("Failed to handle message from %s: %s", self.name, e)
        except EndOfStream:
            pass
        except ReadError as e:
            error = ConnectionClosed(f"Server {self.name} connection failed: {e}")
        except asyncio.CancelledError:
            self._correlator.fail_all(ConnectionClosed(f"Server {self.name} was disconnected"))
            raise
        except Exception as e:
            logger.exception("Reader for MCP server %s failed", self.name)
            error = ConnectionClosed(f"Server {self.name} connection failed: {e}")
        await self._on_transport_lost(error)

    async def _dispatch(self, message: JSONRPCMessage) -> None:
        if isinstance(message, JSONRPCResponse):
            self._correlator.resolve(message.id, message)
        elif isinstance(message, JSONRPCRequest):
            await self._answer_server_request(message)
        else:
            await self._handle_notification(message)

    async def _answer_server_request(self, request: JSONRPCRequest) -> None:
        if request.method == "ping":
            await self._transport.send(encode_result(request.id, {}))
            return
        logger.debug("Rejecting server request %s from %s", request.method, self.name)
        await self._transport.send(
            encode_error(request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}")
        )

    async def _handle_notification(self, notification: JSONRPCNotification) -> None:
        method = notification.method
        params = notification.params
        if method == "notifications/message":
            level = _LOG_LEVELS.get(str(params.get("level", "info")).lower(), logging.INFO)
            source = params.get("logger") or self.name
            logger.log(level, "[%s] %s", source, params.get("data"))
        elif method.endswith("/list_changed"):
            logger.info("MCP server %s reported %s", self.name, method)
            await self._emit("mcp.list_changed", {"name": self.name, "method": method})
        else:
            logger.debug("Ignoring notification %s from %s", method, self.name)

    async def _on_transport_lost(self, error: ConnectionClosed) -> None:
        failed = self._correlator.fail_all(error)
        if self._state is not ClientState.READY:
            # initialize() or shutdown() owns the teardown in every other state
            return
        self._state = ClientState.CLOSED
        logger.warning(
            "MCP server %s connection lost (%d pending request(s) failed): %s%s",
            self.name,
            failed,
            error,
            self._stderr_suffix(),
        )
        try:
            await self._transport.terminate()
        except ShutdownError as e:
            logger.warning("MCP server %s cleanup failed: %s", self.name, e)
        for callback in self._close_callbacks:
            try:
                await callback(self)
            except Exception:
                logger.exception("Close callback failed for MCP server %s", self.name)

    async def _close(self, error: ConnectionClosed) -> ShutdownError | None:
        self._state = ClientState.SHUTTING_DOWN
        self._correlator.fail_all(error)
        failure: ShutdownError | None = None
        try:
            await self._transport.terminate()
        except ShutdownError as e:
            logger.warning("MCP server %s did not shut down cleanly: %s", self.name, e)
            failure = e
        finally:
            await self._stop_reader()
            self._state = ClientState.CLOSED
        logger.info("MCP server %s closed", self.name)
        return failure

    async def _stop_reader(self, *, cancel: bool = True) -> None:
        task = self._reader_task
        if task is None or task is asyncio.current_task():
            return
        if cancel and not task.done():
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _emit(self, event_type: str, payload: dict[str, Any]) -> None:
        if self._on_event is None:
            return
        try:
            await self._on_event(event_type, payload)
        except Exception:
            logger.exception("Failed to publish %s for MCP server %s", event_type, self.name)

    def _stderr_suffix(self) -> str:
        tail_fn = getattr(self._transport, "stderr_tail", None)
        tail = tail_fn()[-5:] if callable(tail_fn) else []
        return f" | stderr: {' / '.join(tail)}" if tail else ""

    def _failure_detail(self, exc: BaseException) -> str:
        return f"{exc}{self._stderr_suffix()}"
