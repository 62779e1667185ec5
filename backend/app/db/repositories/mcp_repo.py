from __future__ import annotations

from sqlalchemy import select

from app.db.models.mcp_server import MCPServer
from app.db.repositories.base_repo import BaseRepository


class MCPRepository(BaseRepository):
    def list_all_servers(self) -> list[MCPServer]:
        stmt = select(MCPServer).order_by(MCPServer.name.asc(), MCPServer.id.asc())
        return list(self.db.scalars(stmt).all())

    def get_server(self, server_id: str) -> MCPServer | None:
        return self.db.get(MCPServer, server_id)

    def get_server_by_name(self, name: str) -> MCPServer | None:
        stmt = select(MCPServer).where(MCPServer.name == name)
        return self.db.scalars(stmt).first()

    def create_server(
        self,
        *,
        id: str,
        name: str,
        command: str,
        args_json: str,
        env_encrypted: str,
        description: str,
        category: str,
        created_at: str,
    ) -> MCPServer:
        server = MCPServer(
            id=id,
            name=name,
            command=command,
            args_json=args_json,
            env_encrypted=env_encrypted,
            description=description,
            category=category,
            enabled=1,
            created_at=created_at,
            last_connected_at=None,
        )
        self.add(server)
        return server

    def update_server(
        self,
        server: MCPServer,
        *,
        name: str | None = None,
        command: str | None = None,
        args_json: str | None = None,
        env_encrypted: str | None = None,
        description: str | None = None,
        category: str | None = None,
    ) -> MCPServer:
        if name is not None:
            server.name = name
        if command is not None:
            server.command = command
        if args_json is not None:
            server.args_json = args_json
        if env_encrypted is not None:
            server.env_encrypted = env_encrypted
        if description is not None:
            server.description = description
        if category is not None:
            server.category = category
        return server

    def delete_server(self, server_id: str) -> None:
        server = self.db.get(MCPServer, server_id)
        if server:
            self.db.delete(server)

    def set_server_enabled(self, server: MCPServer, enabled: bool) -> None:
        server.enabled = 1 if enabled else 0

    def set_last_connected(self, server: MCPServer, timestamp: str) -> None:
        server.last_connected_at = timestamp
