import asyncio
import json
import logging

import pytest

from app.mcp.client import ClientOptions, ClientState, MCPClient
from app.mcp.errors import (
    ConnectionClosed,
    EndOfStream,
    HandshakeFailed,
    NotConnected,
    RemoteError,
    RequestTimeout,
)


class MemoryTransport:
    """In-process transport that answers initialize and records every frame sent."""

    def __init__(self) -> None:
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.running = True

    def push(self, payload) -> None:
        self.incoming.put_nowait(json.dumps(payload).encode())

    async def send(self, message: bytes) -> None:
        data = json.loads(message)
        self.sent.append(data)
        if data.get("method") == "initialize":
            self.push(
                {
                    "jsonrpc": "2.0",
                    "id": data["id"],
                    "result": {"protocolVersion": "2024-11-05", "serverInfo": {"name": "mem"}},
                }
            )
        elif data.get("method") == "tools/call":
            self.push({"jsonrpc": "2.0", "id": data["id"], "result": data["params"]})

    async def receive(self) -> bytes:
        item = await self.incoming.get()
        if item is None:
            raise EndOfStream("memory transport closed")
        if isinstance(item, BaseException):
            raise item
        return item

    async def terminate(self) -> None:
        if self.running:
            self.running = False
            self.incoming.put_nowait(None)

    @property
    def is_running(self) -> bool:
        return self.running


async def _wait_for(predicate, timeout: float = 3.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)


def _start(fake_server, options: ClientOptions, env: dict | None = None, **kwargs):
    command, args = fake_server
    return MCPClient.start("fake", command, args, env, options=options, **kwargs)


def test_handshake_then_tool_and_resource_calls(fake_server, fast_options: ClientOptions) -> None:
    async def _scenario() -> dict:
        client = await _start(fake_server, fast_options)
        try:
            tools = await client.list_tools()
            echoed = await client.call_tool("echo", {"text": "hi"})
            resources = await client.list_resources()
            contents = await client.read_resource("mem://greeting")
            pong = await client.ping()
            snapshot = client.snapshot()
        finally:
            await client.shutdown()
        return {
            "tools": [t["name"] for t in tools["tools"]],
            "echoed": echoed,
            "resources": resources,
            "text": contents["contents"][0]["text"],
            "pong": pong,
            "snapshot": snapshot,
            "state": client.state,
        }

    result = asyncio.run(_scenario())
    assert "echo" in result["tools"]
    assert result["echoed"] == {"text": "hi"}
    assert result["resources"]["resources"][0]["uri"] == "mem://greeting"
    assert result["text"] == "hello"
    assert result["pong"] == {}
    assert result["snapshot"]["state"] == "ready"
    assert result["snapshot"]["serverInfo"] == {"name": "fake-mcp", "version": "1.0.0"}
    assert result["snapshot"]["protocolVersion"] == "2024-11-05"
    assert result["state"] is ClientState.CLOSED


def test_remote_errors_carry_code_and_message(fake_server, fast_options: ClientOptions) -> None:
    async def _scenario() -> tuple[RemoteError, RemoteError]:
        client = await _start(fake_server, fast_options)
        try:
            with pytest.raises(RemoteError) as unknown_tool:
                await client.call_tool("nope", {})
            with pytest.raises(RemoteError) as missing:
                await client.read_resource("mem://missing")
            # the connection stays usable after remote errors
            assert await client.call_tool("echo", {"n": 1}) == {"n": 1}
        finally:
            await client.shutdown()
        return unknown_tool.value, missing.value

    unknown_tool, missing = asyncio.run(_scenario())
    assert unknown_tool.code == -32602
    assert str(unknown_tool) == "MCP error -32602: Unknown tool: nope"
    assert missing.code == -32002
    assert missing.kind == "remote_error"


def test_is_error_tool_results_are_returned_not_raised(fake_server, fast_options: ClientOptions) -> None:
    async def _scenario() -> dict:
        client = await _start(fake_server, fast_options)
        try:
            return await client.call_tool("fail", {})
        finally:
            await client.shutdown()

    result = asyncio.run(_scenario())
    assert result["isError"] is True
    assert result["content"][0]["text"] == "boom"


def test_concurrent_requests_each_get_their_own_response(fake_server, fast_options: ClientOptions) -> None:
    async def _scenario() -> list:
        client = await _start(fake_server, fast_options)
        try:
            return await asyncio.gather(
                client.call_tool("delayed_echo", {"delay": 0.4, "tag": "slow"}),
                client.call_tool("delayed_echo", {"delay": 0.0, "tag": "fast"}),
                client.call_tool("delayed_echo", {"delay": 0.2, "tag": "middle"}),
                client.list_tools(),
            )
        finally:
            await client.shutdown()

    slow, fast, middle, tools = asyncio.run(_scenario())
    assert slow["tag"] == "slow"
    assert fast["tag"] == "fast"
    assert middle["tag"] == "middle"
    assert "tools" in tools


def test_stray_frames_and_unknown_ids_are_ignored(fake_server, fast_options: ClientOptions) -> None:
    async def _scenario() -> tuple[dict, dict]:
        client = await _start(fake_server, fast_options, {"FAKE_MCP_MODE": "stray"})
        try:
            first = await client.call_tool("echo", {"a": 1})
            second = await client.call_tool("echo", {"b": 2})
        finally:
            await client.shutdown()
        return first, second

    assert asyncio.run(_scenario()) == ({"a": 1}, {"b": 2})


def test_timeout_fails_only_that_request(fake_server) -> None:
    options = ClientOptions(startup_timeout=5.0, request_timeout=0.3, grace_period=0.5)

    async def _scenario() -> tuple[RequestTimeout, dict, int]:
        client = await _start(fake_server, options)
        try:
            with pytest.raises(RequestTimeout) as info:
                await client.call_tool("hang", {})
            after = await client.call_tool("echo", {"ok": True})
            return info.value, after, client.pending_count
        finally:
            await client.shutdown()

    error, after, pending = asyncio.run(_scenario())
    assert error.kind == "timeout"
    assert after == {"ok": True}
    assert pending == 0


def test_shutdown_fails_pending_requests(fake_server, fast_options: ClientOptions) -> None:
    async def _scenario() -> None:
        client = await _start(fake_server, fast_options)
        hanging = asyncio.create_task(client.call_tool("hang", {}))
        await _wait_for(lambda: client.pending_count == 1)
        await client.shutdown()
        with pytest.raises(ConnectionClosed):
            await hanging
        with pytest.raises(NotConnected):
            await client.list_tools()
        # second shutdown is a no-op
        await client.shutdown()
        assert client.state is ClientState.CLOSED

    asyncio.run(_scenario())


def test_server_exit_fails_pending_and_runs_close_callbacks(fake_server, fast_options: ClientOptions) -> None:
    async def _scenario() -> list[str]:
        client = await _start(fake_server, fast_options)
        lost: list[str] = []

        async def _on_lost(c: MCPClient) -> None:
            lost.append(c.name)

        client.add_close_callback(_on_lost)
        with pytest.raises(ConnectionClosed):
            await client.call_tool("crash", {})
        await _wait_for(lambda: bool(lost))
        assert client.state is ClientState.CLOSED
        await client.shutdown()
        return lost

    assert asyncio.run(_scenario()) == ["fake"]


def test_handshake_error_response_raises_handshake_failed(fake_server, fast_options: ClientOptions) -> None:
    async def _scenario() -> None:
        await _start(fake_server, fast_options, {"FAKE_MCP_MODE": "bad_handshake"})

    with pytest.raises(HandshakeFailed) as info:
        asyncio.run(_scenario())
    assert "Unsupported protocol version" in str(info.value)
    assert info.value.kind == "handshake_failed"


def test_unanswered_handshake_times_out(fake_server) -> None:
    options = ClientOptions(startup_timeout=0.5, request_timeout=5.0, grace_period=0.5)

    async def _scenario() -> None:
        await _start(fake_server, options, {"FAKE_MCP_MODE": "no_handshake"})

    with pytest.raises(HandshakeFailed):
        asyncio.run(_scenario())


def test_env_overrides_reach_the_server(fake_server, fast_options: ClientOptions) -> None:
    async def _scenario() -> dict:
        client = await _start(fake_server, fast_options, {"DESK_SECRET": "s3cret"})
        try:
            return await client.call_tool("env", {"name": "DESK_SECRET"})
        finally:
            await client.shutdown()

    assert asyncio.run(_scenario()) == {"value": "s3cret", "hasPath": True}


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


def test_log_and_list_changed_notifications(fake_server, fast_options: ClientOptions) -> None:
    events: list[tuple[str, dict]] = []

    async def _on_event(event_type: str, payload: dict) -> None:
        events.append((event_type, payload))

    async def _scenario() -> dict:
        client = await _start(fake_server, fast_options, on_event=_on_event)
        try:
            return await client.call_tool("log", {})
        finally:
            await client.shutdown()

    # app.* loggers do not propagate once the app has configured logging, so listen directly
    handler = _ListHandler()
    client_logger = logging.getLogger("app.mcp.client")
    client_logger.addHandler(handler)
    try:
        result = asyncio.run(_scenario())
    finally:
        client_logger.removeHandler(handler)

    assert result == {"logged": True}
    assert any(
        record.levelno == logging.WARNING and "about to answer" in record.getMessage()
        for record in handler.records
    )
    assert events == [
        ("mcp.list_changed", {"name": "fake", "method": "notifications/tools/list_changed"})
    ]


def test_server_initiated_requests_are_answered() -> None:
    async def _scenario() -> list[dict]:
        transport = MemoryTransport()
        client = MCPClient("mem", transport, options=ClientOptions(startup_timeout=2.0))
        await client.initialize()
        transport.push({"jsonrpc": "2.0", "id": "srv-1", "method": "ping"})
        transport.push({"jsonrpc": "2.0", "id": "srv-2", "method": "sampling/createMessage"})
        await _wait_for(lambda: len(transport.sent) >= 4)
        await client.shutdown()
        return transport.sent

    sent = asyncio.run(_scenario())
    assert sent[0]["method"] == "initialize"
    assert sent[0]["params"]["clientInfo"]["name"] == "desk-backend"
    assert sent[1] == {"jsonrpc": "2.0", "method": "notifications/initialized"}
    assert sent[2] == {"jsonrpc": "2.0", "id": "srv-1", "result": {}}
    assert sent[3]["id"] == "srv-2"
    assert sent[3]["error"]["code"] == -32601


def test_requests_before_handshake_are_rejected() -> None:
    async def _scenario() -> None:
        client = MCPClient("mem", MemoryTransport())
        with pytest.raises(NotConnected):
            await client.list_tools()

    asyncio.run(_scenario())


def test_deeply_nested_frames_are_dropped(fake_server, fast_options: ClientOptions) -> None:
    async def _scenario() -> tuple[dict, dict, ClientState]:
        client = await _start(fake_server, fast_options, {"FAKE_MCP_MODE": "deep_frame"})
        try:
            tools = await client.list_tools()
            echoed = await client.call_tool("echo", {"still": "alive"})
            return tools, echoed, client.state
        finally:
            await client.shutdown()

    tools, echoed, state = asyncio.run(_scenario())
    assert "echo" in [t["name"] for t in tools["tools"]]
    assert echoed == {"still": "alive"}
    assert state is ClientState.READY


def test_unexpected_reader_failure_closes_the_connection() -> None:
    async def _scenario() -> tuple[list[str], ClientState]:
        transport = MemoryTransport()
        client = MCPClient("mem", transport, options=ClientOptions(startup_timeout=2.0, request_timeout=None))
        await client.initialize()
        lost: list[str] = []

        async def _on_lost(c: MCPClient) -> None:
            lost.append(c.name)

        client.add_close_callback(_on_lost)
        waiting = asyncio.create_task(client.ping())
        await _wait_for(lambda: client.pending_count == 1)
        transport.incoming.put_nowait(RuntimeError("decoder blew up"))
        # no request timeout: the reader failure alone must resolve the waiter
        with pytest.raises(ConnectionClosed):
            await asyncio.wait_for(waiting, timeout=2)
        await _wait_for(lambda: bool(lost))
        with pytest.raises(NotConnected):
            await client.list_tools()
        return lost, client.state

    lost, state = asyncio.run(_scenario())
    assert lost == ["mem"]
    assert state is ClientState.CLOSED


def test_tool_arguments_are_sent_verbatim() -> None:
    async def _scenario() -> tuple[list[dict], list]:
        transport = MemoryTransport()
        client = MCPClient("mem", transport, options=ClientOptions(startup_timeout=2.0))
        await client.initialize()
        try:
            without = await client.call_tool("no_args")
            with_list = await client.call_tool("list_args", [1, 2])
        finally:
            await client.shutdown()
        return [without, with_list], transport.sent

    results, sent = asyncio.run(_scenario())
    assert results == [{"name": "no_args"}, {"name": "list_args", "arguments": [1, 2]}]
    calls = [frame["params"] for frame in sent if frame.get("method") == "tools/call"]
    assert calls == [{"name": "no_args"}, {"name": "list_args", "arguments": [1, 2]}]
