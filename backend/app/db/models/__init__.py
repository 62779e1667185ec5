from app.db.models.mcp_server import MCPServer

__all__ = ["MCPServer"]
