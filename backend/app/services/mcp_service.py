"""MCP connection commands and saved server configuration management."""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config.defaults import (
    DEFAULT_FILESYSTEM_SERVER_NAME,
    MCP_SERVER_CATEGORIES,
    MCP_SERVER_TEMPLATES,
)
from app.db.models.mcp_server import MCPServer
from app.db.repositories.mcp_repo import MCPRepository
from app.mcp.client_manager import MCPClientManager, get_mcp_client_manager
from app.mcp.errors import MCPError, NotConnected
from app.middleware.error_handler import ServiceError
from app.utils.encryption import decrypt_env, encrypt_env, mask_secret
from app.utils.ids import generate_id
from app.utils.json_helpers import safe_parse_json_list
from app.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    "already_connected": 409,
    "not_connected": 404,
    "timeout": 504,
    "shutdown_error": 500,
}


def mcp_service_error(exc: MCPError, prefix: str | None = None) -> ServiceError:
    """Flatten an MCP failure into the user-facing message, keeping its kind."""
    if prefix is None or isinstance(exc, NotConnected):
        message = str(exc)
    else:
        message = f"{prefix}: {exc}"
    return ServiceError(message, status_code=_STATUS_BY_KIND.get(exc.kind, 502), kind=exc.kind)


class MCPService:
    """Command layer over the connection registry; `db` is only needed for saved servers."""

    def __init__(self, db: Session | None = None, *, manager: MCPClientManager | None = None) -> None:
        self._repo = MCPRepository(db) if db is not None else None
        self._manager = manager or get_mcp_client_manager()

    async def connect(
        self,
        name: str,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
    ) -> dict:
        try:
            await self._manager.connect(name, command, args or [], env or {})
        except MCPError as exc:
            if exc.kind == "already_connected":
                raise mcp_service_error(exc) from exc
            logger.warning("Failed to connect %s: %s", name, exc)
            raise mcp_service_error(exc, f"Failed to connect to {name}") from exc
        except ValueError as exc:
            raise ServiceError(str(exc)) from exc
        return {"name": name, "message": f"Connected to MCP server: {name}"}

    async def disconnect(self, name: str) -> dict:
        try:
            await self._manager.disconnect(name)
        except NotConnected as exc:
            raise mcp_service_error(exc) from exc
        except MCPError as exc:
            raise mcp_service_error(exc, f"Failed to shutdown {name}") from exc
        return {"name": name, "message": f"Disconnected MCP server: {name}"}

    async def restart(self, name: str) -> dict:
        try:
            await self._manager.restart(name)
        except NotConnected as exc:
            raise mcp_service_error(exc) from exc
        except MCPError as exc:
            raise mcp_service_error(exc, f"Failed to restart {name}") from exc
        return {"name": name, "message": f"Restarted MCP server: {name}"}

    async def list_connections(self) -> list[str]:
        return await self._manager.names()

    async def connection_details(self) -> list[dict]:
        return await self._manager.snapshots()

    async def list_tools(self, name: str) -> Any:
        try:
            return await self._manager.list_tools(name)
        except MCPError as exc:
            raise mcp_service_error(exc, "Failed to list tools") from exc

    async def call_tool(self, name: str, tool_name: str, arguments: Any) -> Any:
        try:
            return await self._manager.call_tool(name, tool_name, arguments)
        except MCPError as exc:
            raise mcp_service_error(exc, "Failed to call tool") from exc

    async def list_resources(self, name: str) -> Any:
        try:
            return await self._manager.list_resources(name)
        except MCPError as exc:
            raise mcp_service_error(exc, "Failed to list resources") from exc

    async def read_resource(self, name: str, uri: str) -> Any:
        try:
            return await self._manager.read_resource(name, uri)
        except MCPError as exc:
            raise mcp_service_error(exc, "Failed to read resource") from exc

    # Saved server configurations

    def _require_repo(self) -> MCPRepository:
        if self._repo is None:
            raise RuntimeError("MCPService was created without a database session")
        return self._repo

    @staticmethod
    def _validate_category(category: str) -> None:
        if category not in MCP_SERVER_CATEGORIES:
            raise ValueError(
                f"Unknown category: {category}. Expected one of: {', '.join(MCP_SERVER_CATEGORIES)}"
            )

    @staticmethod
    def _server_out(server: MCPServer, connected: set[str] | None = None) -> dict:
        try:
            env = decrypt_env(server.env_encrypted)
        except ValueError:
            env = {}
        return {
            "id": server.id,
            "name": server.name,
            "command": server.command,
            "args": safe_parse_json_list(server.args_json),
            "env": {key: mask_secret(value) for key, value in env.items()},
            "description": server.description,
            "category": server.category,
            "enabled": bool(server.enabled),
            "connected": server.name in (connected or set()),
            "createdAt": server.created_at,
            "lastConnectedAt": server.last_connected_at,
        }

    async def list_servers(self) -> list[dict]:
        repo = self._require_repo()
        connected = set(await self._manager.names())
        return [self._server_out(s, connected) for s in repo.list_all_servers()]

    async def get_server(self, server_id: str) -> dict | None:
        server = self._require_repo().get_server(server_id)
        if server is None:
            return None
        return self._server_out(server, set(await self._manager.names()))

    def create_server(
        self,
        *,
        name: str,
        command: str,
        args: list[str],
        env: dict[str, str],
        description: str = "",
        category: str = "custom",
    ) -> dict:
        repo = self._require_repo()
        self._validate_category(category)
        if repo.get_server_by_name(name) is not None:
            raise ValueError(f"Server {name} already exists")
        server = repo.create_server(
            id=generate_id("mcp"),
            name=name,
            command=command,
            args_json=json.dumps(list(args)),
            env_encrypted=encrypt_env(env),
            description=description,
            category=category,
            created_at=utc_now_iso(),
        )
        try:
            repo.commit()
        except IntegrityError as exc:
            repo.rollback()
            raise ValueError(f"Server {name} already exists") from exc
        return self._server_out(server)

    def update_server(
        self,
        server_id: str,
        *,
        name: str | None = None,
        command: str | None = None,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        description: str | None = None,
        category: str | None = None,
    ) -> dict | None:
        repo = self._require_repo()
        server = repo.get_server(server_id)
        if server is None:
            return None
        if category is not None:
            self._validate_category(category)
        if name is not None and name != server.name:
            if server.name == DEFAULT_FILESYSTEM_SERVER_NAME:
                raise ValueError("Cannot rename the default filesystem server")
            existing = repo.get_server_by_name(name)
            if existing is not None and existing.id != server.id:
                raise ValueError(f"Server {name} already exists")
        repo.update_server(
            server,
            name=name,
            command=command,
            args_json=json.dumps(list(args)) if args is not None else None,
            env_encrypted=encrypt_env(env) if env is not None else None,
            description=description,
            category=category,
        )
        repo.commit()
        return self._server_out(server)

    def delete_server(self, server_id: str) -> bool:
        repo = self._require_repo()
        server = repo.get_server(server_id)
        if server is None:
            return False
        if server.name == DEFAULT_FILESYSTEM_SERVER_NAME:
            raise ValueError("Cannot remove the default filesystem server")
        repo.delete_server(server_id)
        repo.commit()
        return True

    def set_server_enabled(self, server_id: str, enabled: bool) -> dict | None:
        repo = self._require_repo()
        server = repo.get_server(server_id)
        if server is None:
            return None
        repo.set_server_enabled(server, enabled)
        repo.commit()
        return self._server_out(server)

    async def connect_server(self, server_id: str) -> dict | None:
        """Connect a saved server under its configured name."""
        repo = self._require_repo()
        server = repo.get_server(server_id)
        if server is None:
            return None
        if not server.enabled:
            raise ServiceError(f"Server {server.name} is disabled", status_code=400)
        try:
            env = decrypt_env(server.env_encrypted)
        except ValueError as exc:
            raise ServiceError(f"Cannot read environment for {server.name}: {exc}") from exc
        result = await self.connect(
            server.name, server.command, safe_parse_json_list(server.args_json), env
        )
        repo.set_last_connected(server, utc_now_iso())
        repo.commit()
        return result

    @staticmethod
    def list_templates() -> list[dict]:
        return [dict(template) for template in MCP_SERVER_TEMPLATES]
