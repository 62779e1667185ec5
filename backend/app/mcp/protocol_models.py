"""JSON-RPC 2.0 framing and message models for the MCP stdio channel."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

JSONRPC_VERSION = "2.0"
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


@dataclass
class JSONRPCResponse:
    id: int | str
    result: Any = None
    error: dict[str, Any] | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


@dataclass
class JSONRPCNotification:
    method: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class JSONRPCRequest:
    """A request initiated by the server (e.g. ping)."""

    id: int | str
    method: str
    params: dict[str, Any] = field(default_factory=dict)


JSONRPCMessage = JSONRPCResponse | JSONRPCNotification | JSONRPCRequest


@dataclass
class HandshakeConfig:
    protocol_version: str = "2024-11-05"
    client_name: str = "desk-backend"
    client_version: str = "0.1.0"
    capabilities: dict[str, Any] = field(default_factory=dict)

    def initialize_params(self) -> dict[str, Any]:
        return {
            "protocolVersion": self.protocol_version,
            "capabilities": dict(self.capabilities),
            "clientInfo": {"name": self.client_name, "version": self.client_version},
        }


@dataclass
class InitializeResult:
    protocol_version: str | None
    server_info: dict[str, Any]
    capabilities: dict[str, Any]
    instructions: str | None = None


def _dumps(payload: dict[str, Any]) -> bytes:
    # Compact separators keep each frame on exactly one line.
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def encode_request(req_id: int, method: str, params: dict[str, Any] | None = None) -> bytes:
    msg: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": req_id, "method": method}
    if params is not None:
        msg["params"] = params
    return _dumps(msg)


def encode_notification(method: str, params: dict[str, Any] | None = None) -> bytes:
    msg: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        msg["params"] = params
    return _dumps(msg)


def encode_result(req_id: int | str, result: Any) -> bytes:
    return _dumps({"jsonrpc": JSONRPC_VERSION, "id": req_id, "result": result})


def encode_error(req_id: int | str, code: int, message: str) -> bytes:
    return _dumps(
        {"jsonrpc": JSONRPC_VERSION, "id": req_id, "error": {"code": code, "message": message}}
    )


def _parse_one(raw: Any) -> JSONRPCMessage:
    if not isinstance(raw, dict):
        raise ValueError("JSON-RPC message must be an object")
    method = raw.get("method")
    has_id = "id" in raw and raw.get("id") is not None
    params = raw.get("params")
    if not isinstance(params, dict):
        params = {}
    if isinstance(method, str):
        if has_id:
            return JSONRPCRequest(id=raw["id"], method=method, params=params)
        return JSONRPCNotification(method=method, params=params)
    if not has_id:
        raise ValueError("JSON-RPC response is missing an id")
    req_id = raw["id"]
    if not isinstance(req_id, (int, str)) or isinstance(req_id, bool):
        raise ValueError(f"Unsupported JSON-RPC id: {req_id!r}")
    if "error" in raw:
        error = raw.get("error")
        if not isinstance(error, dict):
            error = {"code": INTERNAL_ERROR, "message": str(error)}
        return JSONRPCResponse(id=req_id, error=error)
    if "result" not in raw:
        raise ValueError("JSON-RPC response has neither result nor error")
    return JSONRPCResponse(id=req_id, result=raw.get("result"))


def parse_messages(line: bytes | str) -> list[JSONRPCMessage]:
    """Parse one frame; batches yield several messages. Raises ValueError on malformed input."""
    text = line.decode("utf-8") if isinstance(line, bytes) else line
    text = text.strip()
    if not text:
        return []
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON frame: {e}") from e
    except RecursionError as e:
        raise ValueError("JSON frame is nested too deeply") from e
    if isinstance(raw, list):
        return [_parse_one(item) for item in raw]
    return [_parse_one(raw)]


def error_code_and_message(error: dict[str, Any]) -> tuple[int, str]:
    code = error.get("code")
    if not isinstance(code, int) or isinstance(code, bool):
        code = INTERNAL_ERROR
    message = error.get("message")
    if not isinstance(message, str) or not message:
        message = "Unknown error"
    return code, message


def parse_initialize_result(payload: Any) -> InitializeResult:
    if not isinstance(payload, dict):
        raise ValueError("initialize result must be an object")
    version = payload.get("protocolVersion")
    if version is not None and not isinstance(version, str):
        raise ValueError("initialize result has a non-string protocolVersion")
    server_info = payload.get("serverInfo")
    capabilities = payload.get("capabilities")
    instructions = payload.get("instructions")
    return InitializeResult(
        protocol_version=version,
        server_info=server_info if isinstance(server_info, dict) else {},
        capabilities=capabilities if isinstance(capabilities, dict) else {},
        instructions=instructions if isinstance(instructions, str) else None,
    )
