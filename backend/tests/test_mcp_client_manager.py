import asyncio
import os

import pytest

from app.mcp.client import ClientOptions
from app.mcp.client_manager import MCP_EVENT_CHANNEL, MCPClientManager
from app.mcp.errors import AlreadyConnected, ConnectionClosed, HandshakeFailed, NotConnected
from app.services.event_bus import EventBus


def _drain(queue: asyncio.Queue) -> list[dict]:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


async def _wait_for(predicate, timeout: float = 3.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not await predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)


def test_connect_use_disconnect_leaves_no_process(fake_server, fast_options: ClientOptions) -> None:
    command, args = fake_server

    async def _scenario() -> tuple[list[str], dict, list[str], int, list[dict]]:
        bus = EventBus()
        queue = await bus.subscribe(MCP_EVENT_CHANNEL)
        manager = MCPClientManager(options=fast_options, event_bus=bus)
        client = await manager.connect("fs-tools", command, args, {})
        pid = client.pid
        connected = await manager.names()
        echoed = await manager.call_tool("fs-tools", "echo", {"text": "hi"})
        await manager.disconnect("fs-tools")
        with pytest.raises(NotConnected):
            await manager.call_tool("fs-tools", "echo", {})
        return connected, echoed, await manager.names(), pid, _drain(queue)

    connected, echoed, after, pid, events = asyncio.run(_scenario())
    assert connected == ["fs-tools"]
    assert echoed == {"text": "hi"}
    assert after == []
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)
    assert [event["type"] for event in events] == ["mcp.connected", "mcp.tool_called", "mcp.disconnected"]
    assert all(event["channel"] == "mcp" for event in events)
    assert events[1]["payload"] == {"name": "fs-tools", "toolName": "echo", "isError": False}


def test_duplicate_name_is_rejected_and_first_connection_survives(
    fake_server, fast_options: ClientOptions
) -> None:
    command, args = fake_server

    async def _scenario() -> dict:
        manager = MCPClientManager(options=fast_options)
        await manager.connect("dup", command, args)
        try:
            with pytest.raises(AlreadyConnected) as info:
                await manager.connect("dup", command, args)
            assert str(info.value) == "Server dup is already connected"
            return await manager.call_tool("dup", "echo", {"still": "alive"})
        finally:
            await manager.disconnect_all()

    assert asyncio.run(_scenario()) == {"still": "alive"}


def test_concurrent_connects_with_same_name_register_once(fake_server, fast_options: ClientOptions) -> None:
    command, args = fake_server

    async def _scenario() -> tuple[list, list[str]]:
        manager = MCPClientManager(options=fast_options)
        results = await asyncio.gather(
            manager.connect("race", command, args),
            manager.connect("race", command, args),
            return_exceptions=True,
        )
        names = await manager.names()
        await manager.disconnect_all()
        return results, names

    results, names = asyncio.run(_scenario())
    assert sum(isinstance(r, AlreadyConnected) for r in results) == 1
    assert names == ["race"]


def test_failed_connect_does_not_register_the_name(fake_server, fast_options: ClientOptions) -> None:
    command, args = fake_server

    async def _scenario() -> list[str]:
        manager = MCPClientManager(options=fast_options)
        with pytest.raises(HandshakeFailed):
            await manager.connect("broken", command, args, {"FAKE_MCP_MODE": "bad_handshake"})
        assert await manager.names() == []
        # the name is free for a retry
        await manager.connect("broken", command, args)
        names = await manager.names()
        await manager.disconnect_all()
        return names

    assert asyncio.run(_scenario()) == ["broken"]


def test_empty_name_and_unknown_disconnect() -> None:
    async def _scenario() -> None:
        manager = MCPClientManager(options=ClientOptions())
        with pytest.raises(ValueError):
            await manager.connect("  ", "python", [])
        with pytest.raises(NotConnected) as info:
            await manager.disconnect("ghost")
        assert str(info.value) == "Server ghost not connected"

    asyncio.run(_scenario())


def test_server_that_exits_is_removed_from_registry(fake_server, fast_options: ClientOptions) -> None:
    command, args = fake_server

    async def _scenario() -> list[dict]:
        bus = EventBus()
        queue = await bus.subscribe(MCP_EVENT_CHANNEL)
        manager = MCPClientManager(options=fast_options, event_bus=bus)
        await manager.connect("crashy", command, args)
        with pytest.raises(ConnectionClosed):
            await manager.call_tool("crashy", "crash", {})

        async def _gone() -> bool:
            return await manager.names() == []

        await _wait_for(_gone)
        with pytest.raises(NotConnected):
            await manager.list_tools("crashy")
        return _drain(queue)

    events = asyncio.run(_scenario())
    assert events[-1]["type"] == "mcp.connection_lost"
    assert events[-1]["payload"] == {"name": "crashy"}


def test_hanging_call_does_not_block_other_servers(fake_server, fast_options: ClientOptions) -> None:
    command, args = fake_server

    async def _scenario() -> tuple[list[str], dict]:
        manager = MCPClientManager(options=fast_options)
        slow = await manager.connect("slow", command, args)
        hanging = asyncio.create_task(manager.call_tool("slow", "hang", {}))
        while slow.pending_count == 0:
            await asyncio.sleep(0.02)
        await asyncio.wait_for(manager.connect("quick", command, args), timeout=5)
        names = await asyncio.wait_for(manager.names(), timeout=0.5)
        echoed = await asyncio.wait_for(manager.call_tool("quick", "echo", {"x": 1}), timeout=2)
        await manager.disconnect_all()
        with pytest.raises(ConnectionClosed):
            await hanging
        return sorted(names), echoed

    names, echoed = asyncio.run(_scenario())
    assert names == ["quick", "slow"]
    assert echoed == {"x": 1}


def test_resources_and_snapshots(fake_server, fast_options: ClientOptions) -> None:
    command, args = fake_server

    async def _scenario() -> tuple[dict, dict, list[dict]]:
        manager = MCPClientManager(options=fast_options)
        await manager.connect("res", command, args)
        try:
            listed = await manager.list_resources("res")
            read = await manager.read_resource("res", "mem://greeting")
            snapshots = await manager.snapshots()
        finally:
            await manager.disconnect_all()
        return listed, read, snapshots

    listed, read, snapshots = asyncio.run(_scenario())
    assert listed["resources"][0]["name"] == "greeting"
    assert read["contents"][0]["text"] == "hello"
    assert snapshots[0]["name"] == "res"
    assert snapshots[0]["state"] == "ready"
    assert snapshots[0]["args"] == fake_server[1]


def test_restart_relaunches_with_same_command_and_env(fake_server, fast_options: ClientOptions) -> None:
    command, args = fake_server

    async def _scenario() -> tuple[int, int, dict, list[str], list[str]]:
        bus = EventBus()
        queue = await bus.subscribe(MCP_EVENT_CHANNEL)
        manager = MCPClientManager(options=fast_options, event_bus=bus)
        first = await manager.connect("again", command, args, {"DESK_SECRET": "kept"})
        old_pid = first.pid
        second = await manager.restart("again")
        try:
            env_value = await manager.call_tool("again", "env", {"name": "DESK_SECRET"})
            names = await manager.names()
        finally:
            await manager.disconnect_all()
        types = [event["type"] for event in _drain(queue)]
        return old_pid, second.pid, env_value, names, types

    old_pid, new_pid, env_value, names, types = asyncio.run(_scenario())
    assert new_pid != old_pid
    with pytest.raises(ProcessLookupError):
        os.kill(old_pid, 0)
    assert env_value["value"] == "kept"
    assert names == ["again"]
    assert types[:3] == ["mcp.connected", "mcp.disconnected", "mcp.connected"]


def test_restart_of_unknown_server_raises_not_connected() -> None:
    async def _scenario() -> None:
        manager = MCPClientManager(options=ClientOptions())
        with pytest.raises(NotConnected):
            await manager.restart("ghost")

    asyncio.run(_scenario())
