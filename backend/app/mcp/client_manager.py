from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from app.config.settings import get_settings
from app.core.container import get_container
from app.mcp.client import ClientOptions, MCPClient
from app.mcp.errors import AlreadyConnected, ConnectionClosed, NotConnected, ShutdownError

logger = logging.getLogger(__name__)

MCP_EVENT_CHANNEL = "mcp"

T = TypeVar("T")
ClientFactory = Callable[..., Awaitable[MCPClient]]


class MCPClientManager:
    """Name -> live MCPClient table.

    The lock only guards the table itself; handshakes, requests and
    shutdowns run after it is released, so a slow tool call never blocks
    lookups for other servers.
    """

    def __init__(
        self,
        *,
        options: ClientOptions | None = None,
        event_bus: Any = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._clients: dict[str, MCPClient] = {}
        self._connecting: set[str] = set()
        self._lock = asyncio.Lock()
        self._options = options
        self._event_bus = event_bus
        self._client_factory = client_factory or MCPClient.start

    def _client_options(self) -> ClientOptions:
        if self._options is None:
            self._options = ClientOptions.from_settings(get_settings())
        return self._options

    async def connect(
        self,
        name: str,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
    ) -> MCPClient:
        """Spawn and handshake a server; the name is only registered once it is ready."""
        if not name or not name.strip():
            raise ValueError("Server name must not be empty")
        async with self._lock:
            if name in self._clients or name in self._connecting:
                raise AlreadyConnected(name)
            self._connecting.add(name)

        env = dict(env or {})
        logger.info("Connecting MCP server %s: %s %s", name, command, list(args or []))
        if env:
            logger.info("MCP server %s environment overrides: %s", name, sorted(env))
        try:
            client = await self._client_factory(
                name,
                command,
                list(args or []),
                env,
                options=self._client_options(),
                on_event=self._publish,
            )
        except BaseException:
            async with self._lock:
                self._connecting.discard(name)
            raise

        async with self._lock:
            self._connecting.discard(name)
            self._clients[name] = client
        client.add_close_callback(self._handle_client_lost)
        if not client.is_ready:
            # process died between handshake and registration
            await self._handle_client_lost(client)
            raise ConnectionClosed(f"Server {name} exited right after connecting")
        await self._publish("mcp.connected", client.snapshot())
        return client

    async def disconnect(self, name: str) -> None:
        async with self._lock:
            client = self._clients.pop(name, None)
        if client is None:
            raise NotConnected(name)
        logger.info("Disconnecting MCP server %s", name)
        try:
            await client.shutdown()
        finally:
            await self._publish("mcp.disconnected", {"name": name})

    async def restart(self, name: str) -> MCPClient:
        """Stop `name` and launch it again with the command, args and env it was started with."""
        client = await self.get(name)
        command, args, env = client.command or "", list(client.args), dict(client.env)
        logger.info("Restarting MCP server %s", name)
        try:
            await self.disconnect(name)
        except ShutdownError as exc:
            # the entry is already gone, so the relaunch can still take the name
            logger.warning("MCP server %s did not stop cleanly before restart: %s", name, exc)
        return await self.connect(name, command, args, env)

    async def disconnect_all(self) -> None:
        async with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        if not clients:
            return
        results = await asyncio.gather(
            *(client.shutdown() for client in clients), return_exceptions=True
        )
        for client, result in zip(clients, results):
            if isinstance(result, BaseException):
                logger.warning("Failed to shut down MCP server %s: %s", client.name, result)

    async def get(self, name: str) -> MCPClient:
        async with self._lock:
            client = self._clients.get(name)
        if client is None:
            raise NotConnected(name)
        return client

    async def with_client(self, name: str, operation: Callable[[MCPClient], Awaitable[T]]) -> T:
        """Look up `name` under the lock, then run `operation` on it without holding the lock."""
        client = await self.get(name)
        return await operation(client)

    async def list_tools(self, name: str) -> Any:
        return await self.with_client(name, lambda client: client.list_tools())

    async def call_tool(self, name: str, tool_name: str, arguments: Any = None) -> Any:
        result = await self.with_client(name, lambda client: client.call_tool(tool_name, arguments))
        is_error = bool(result.get("isError")) if isinstance(result, dict) else False
        await self._publish(
            "mcp.tool_called", {"name": name, "toolName": tool_name, "isError": is_error}
        )
        return result

    async def list_resources(self, name: str) -> Any:
        return await self.with_client(name, lambda client: client.list_resources())

    async def read_resource(self, name: str, uri: str) -> Any:
        return await self.with_client(name, lambda client: client.read_resource(uri))

    async def names(self) -> list[str]:
        async with self._lock:
            return list(self._clients.keys())

    async def snapshots(self) -> list[dict[str, Any]]:
        async with self._lock:
            clients = list(self._clients.values())
        return [client.snapshot() for client in clients]

    async def _handle_client_lost(self, client: MCPClient) -> None:
        async with self._lock:
            if self._clients.get(client.name) is not client:
                return
            del self._clients[client.name]
        logger.warning("MCP server %s exited; removed from connected servers", client.name)
        await self._publish("mcp.connection_lost", {"name": client.name})

    async def _publish(self, event_type: str, payload: dict[str, Any]) -> None:
        if self._event_bus is None:
            return
        try:
            await self._event_bus.publish(MCP_EVENT_CHANNEL, {"type": event_type, "payload": payload})
        except Exception:
            logger.warning("Failed to publish MCP event %s", event_type, exc_info=True)


def get_mcp_client_manager() -> MCPClientManager:
    container = get_container()
    if container is None:
        raise RuntimeError("AppContainer is not initialized")
    return container.mcp_client_manager

