"""
Server integration tests for RoomChat.

Tests include:
- Server startup on a free port
- Welcome and name selection
- Chat fan-out between real WebSocket clients
- Departure announcements and kicks
- Snapshot written on shutdown

Run with: python -m pytest RoomChat/test/test_server_integration.py -v
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import websockets

from RoomChat.core.server.dispatch import DispatchEngine, WELCOME
from RoomChat.core.server.persistence import JsonSnapshotStore, SnapshotTask
from RoomChat.core.server.websocket_manager import ChatServer, ConnectionContext, ConnectionState
from RoomChat.test.conftest import MemoryCredentialStore, TestConfig, recv_until


def cmd(line: str) -> str:
    return json.dumps({"type": "cmd", "cmd": line})


def chat(text: str) -> str:
    return json.dumps({"type": "msg", "text": text})


def is_system(text: str):
    return lambda frame: frame["type"] == "system" and frame["text"] == text


async def connect_as(url: str, name: str):
    ws = await websockets.connect(url)
    await recv_until(ws, is_system(WELCOME))
    await ws.send(cmd(f"/name {name}"))
    await recv_until(ws, lambda f: f["type"] == "list")
    return ws


class TestServerStartup:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_server_starts_on_free_port(self, server_instance):
        assert server_instance.is_running is True
        assert server_instance.port > 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_welcome_on_connect(self, server_instance, test_config: TestConfig):
        async with websockets.connect(test_config.ws_url(server_instance.port)) as ws:
            frame = await recv_until(ws, lambda f: True)
            assert frame == {"type": "system", "text": WELCOME}


class TestChatFlow:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_name_then_chat(self, server_instance, test_config: TestConfig):
        url = test_config.ws_url(server_instance.port)
        alice = await connect_as(url, "alice")
        bob = await connect_as(url, "bob")
        try:
            await alice.send(chat("hello bob"))
            frame = await recv_until(bob, lambda f: f["type"] == "msg")
            assert frame["from"] == "alice"
            assert frame["text"] == "hello bob"
            assert frame["private"] is False
            assert server_instance.connection_count == 2
        finally:
            await alice.close()
            await bob.close()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_chat_before_name_refused(self, server_instance, test_config: TestConfig):
        async with websockets.connect(test_config.ws_url(server_instance.port)) as ws:
            await recv_until(ws, is_system(WELCOME))
            await ws.send(chat("hi"))
            frame = await recv_until(ws, lambda f: True)
            assert frame["text"] == "Please choose a name or login/register before sending messages."

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_binary_frames_ignored(self, server_instance, test_config: TestConfig):
        url = test_config.ws_url(server_instance.port)
        alice = await connect_as(url, "alice")
        bob = await connect_as(url, "bob")
        try:
            await alice.send(b"\xffbinary")
            await alice.send(chat("text only"))
            frame = await recv_until(bob, lambda f: f["type"] == "msg")
            assert frame["text"] == "text only"
            texts = [m.text for m in server_instance.engine.rooms.history("lobby")]
            assert not any("binary" in text for text in texts)
        finally:
            await alice.close()
            await bob.close()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_duplicate_names_suffixed(self, server_instance, test_config: TestConfig):
        url = test_config.ws_url(server_instance.port)
        first = await connect_as(url, "dup")
        second = await websockets.connect(url)
        try:
            await recv_until(second, is_system(WELCOME))
            await second.send(cmd("/name DUP"))
            frame = await recv_until(second, lambda f: f["type"] == "system")
            assert frame["text"] == "Your name is 'DUP-1'. You are not authenticated."
        finally:
            await first.close()
            await second.close()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_leave_announced_on_close(self, server_instance, test_config: TestConfig):
        url = test_config.ws_url(server_instance.port)
        alice = await connect_as(url, "alice")
        bob = await connect_as(url, "bob")
        try:
            await bob.close()
            await recv_until(alice, is_system("-- bob left the room --"))
            frame = await recv_until(alice, lambda f: f["type"] == "list")
            assert frame["users"] == ["alice"]
        finally:
            await alice.close()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unnamed_close_is_silent(self, server_instance, test_config: TestConfig):
        url = test_config.ws_url(server_instance.port)
        alice = await connect_as(url, "alice")
        try:
            async with websockets.connect(url) as lurker:
                await recv_until(lurker, is_system(WELCOME))
            await alice.send(cmd("/list"))
            frame = await recv_until(alice, lambda f: f["type"] in ("list", "system"))
            assert frame == {"type": "list", "users": ["alice"]}
        finally:
            await alice.close()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_kick_closes_with_4000(self, server_instance, test_config: TestConfig):
        url = test_config.ws_url(server_instance.port)
        admin = await websockets.connect(url)
        bob = await connect_as(url, "bob")
        try:
            await recv_until(admin, is_system(WELCOME))
            await admin.send(cmd("/login admin s3cret"))
            await recv_until(admin, is_system("Logged in as 'admin'"))

            await admin.send(cmd("/kick bob"))
            await recv_until(bob, is_system("You have been kicked by an admin."))
            await asyncio.wait_for(bob.wait_closed(), test_config.timeout)
            assert bob.close_code == 4000

            await recv_until(admin, is_system("-- bob has been kicked by an admin --"))
            frame = await recv_until(admin, lambda f: f["type"] == "list")
            assert frame["users"] == ["admin"]
        finally:
            await admin.close()
            await bob.close()


class TestShutdown:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_snapshot_written_and_restored(self, tmp_path, test_config: TestConfig):
        path = str(tmp_path / "history.json")

        def build() -> ChatServer:
            engine = DispatchEngine(credentials=MemoryCredentialStore())
            task = SnapshotTask(engine.rooms, engine.private, JsonSnapshotStore(path))
            return ChatServer(engine=engine, snapshot_task=task)

        async with build().run(test_config.host, 0) as server:
            ws = await connect_as(test_config.ws_url(server.port), "alice")
            await ws.send(chat("remember me"))
            await recv_until(ws, lambda f: f["type"] == "msg")
            await ws.close()

        async with build().run(test_config.host, 0) as server:
            async with websockets.connect(test_config.ws_url(server.port)) as ws:
                await ws.send(cmd("/name bob"))
                frame = await recv_until(ws, lambda f: f["type"] == "history")
                texts = [item["text"] for item in frame["items"]]
                assert "remember me" in texts


class TestConnectionCleanup:

    @pytest.mark.asyncio
    async def test_connection_dropped_when_channel_fails(self, engine):
        server = ChatServer(engine=engine)
        ctx = ConnectionContext(MagicMock())
        server._connections[ctx.conn_id] = ctx
        ctx.channel.wait_closed = AsyncMock(side_effect=RuntimeError("forwarder crashed"))

        with pytest.raises(RuntimeError):
            await server._cleanup_connection(ctx)

        assert server.connection_count == 0
        assert ctx.state == ConnectionState.CLOSED
