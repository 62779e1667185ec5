"""MCP connection and saved-server schemas for API."""

from typing import Any

from pydantic import BaseModel, Field


class ConnectMCPServerRequest(BaseModel):
    name: str = Field(min_length=1, max_length=500)
    command: str = Field(min_length=1)
    args: list[str] = []
    env: dict[str, str] = {}


class CallToolRequest(BaseModel):
    toolName: str = Field(min_length=1)
    arguments: Any = None


class ReadResourceRequest(BaseModel):
    uri: str = Field(min_length=1)


class MCPCommandAck(BaseModel):
    name: str
    message: str


class MCPConnectionOut(BaseModel):
    name: str
    state: str
    command: str | None
    args: list[str]
    pid: int | None
    protocolVersion: str | None
    serverInfo: dict[str, Any]
    capabilities: dict[str, Any]
    pendingRequests: int


class MCPServerOut(BaseModel):
    id: str
    name: str
    command: str
    args: list[str]
    env: dict[str, str]
    description: str
    category: str
    enabled: bool
    connected: bool = False
    createdAt: str
    lastConnectedAt: str | None


class MCPServerTemplateOut(BaseModel):
    name: str
    command: str
    args: list[str]
    env: dict[str, str]
    description: str
    category: str


class CreateMCPServerRequest(BaseModel):
    name: str = Field(min_length=1, max_length=500)
    command: str = Field(min_length=1)
    args: list[str] = []
    env: dict[str, str] = {}
    description: str = ""
    category: str = "custom"


class UpdateMCPServerRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=500)
    command: str | None = Field(None, min_length=1)
    args: list[str] | None = None
    env: dict[str, str] | None = None
    description: str | None = None
    category: str | None = None


class SetMCPServerEnabledRequest(BaseModel):
    enabled: bool
