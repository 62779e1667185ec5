"""MCP transport protocol: line-framed byte channel to a server."""

from __future__ import annotations

from typing import Protocol


class MCPTransport(Protocol):
    """Protocol for MCP transport implementations."""

    async def send(self, message: bytes) -> None: ...

    async def receive(self) -> bytes: ...

    async def terminate(self) -> None: ...

    @property
    def is_running(self) -> bool: ...
