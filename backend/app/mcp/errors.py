"""Error kinds raised by the MCP stdio client and registry."""

from __future__ import annotations

from typing import Any


class MCPError(Exception):
    """Base class for MCP client failures. `kind` lets callers branch without isinstance."""

    kind = "mcp_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SpawnError(MCPError):
    kind = "spawn_error"


class HandshakeFailed(MCPError):
    kind = "handshake_failed"


class WriteError(MCPError):
    kind = "write_error"


class ReadError(MCPError):
    kind = "read_error"


class EndOfStream(MCPError):
    kind = "end_of_stream"


class ConnectionClosed(MCPError):
    kind = "connection_closed"


class RemoteError(MCPError):
    kind = "remote_error"

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"MCP error {code}: {message}")
        self.code = code
        self.remote_message = message
        self.data = data


class AlreadyConnected(MCPError):
    kind = "already_connected"

    def __init__(self, name: str) -> None:
        super().__init__(f"Server {name} is already connected")
        self.name = name


class NotConnected(MCPError):
    kind = "not_connected"

    def __init__(self, name: str, detail: str | None = None) -> None:
        super().__init__(detail or f"Server {name} not connected")
        self.name = name


class ShutdownError(MCPError):
    kind = "shutdown_error"


class RequestTimeout(MCPError):
    kind = "timeout"

    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(f"Request {method} timed out after {timeout:g}s")
        self.method = method
        self.timeout = timeout
