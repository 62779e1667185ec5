"""MCP transport adapters. Only stdio (local child process) is supported."""

from app.mcp.transports.base import MCPTransport
from app.mcp.transports.stdio import StdioTransport, build_env

__all__ = ["MCPTransport", "StdioTransport", "build_env"]
