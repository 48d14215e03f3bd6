"""
WebSocket server that drives every connection through its lifecycle.

Architecture:
    ┌───────────────────────────────────────────────────────────────┐
    │                          ChatServer                           │
    │  ┌──────────────┐  ┌──────────────┐  ┌─────────────────────┐  │
    │  │ Delivery     │  │ Dispatch     │  │ Background loops    │  │
    │  │ Channels     │  │ Engine       │  │ (snapshot/presence) │  │
    │  └──────────────┘  └──────────────┘  └─────────────────────┘  │
    │  ┌──────────────┐  ┌──────────────┐  ┌─────────────────────┐  │
    │  │ Session      │  │ Room/Private │  │ Credential store    │  │
    │  │ Registry     │  │ Stores       │  │ Preview fetcher     │  │
    │  └──────────────┘  └──────────────┘  └─────────────────────┘  │
    └───────────────────────────────────────────────────────────────┘

Connection states:
    CONNECTING -> UNAUTHENTICATED -> ACTIVE -> CLOSED
    A connection that closes before picking a name goes straight from
    UNAUTHENTICATED to CLOSED and never touches shared state.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from enum import Enum, auto
from typing import Dict, Optional

import websockets
from websockets.asyncio.server import ServerConnection

from RoomChat.config import config
from RoomChat.core.server.auth import JsonCredentialStore
from RoomChat.core.server.dispatch import WELCOME, DispatchEngine
from RoomChat.core.server.persistence import JsonSnapshotStore, SnapshotTask
from RoomChat.core.server.presence import PresenceMonitor
from RoomChat.core.server.preview import LinkPreviewFetcher
from RoomChat.core.server.session import Session
from RoomChat.core.server.transport import DeliveryChannel

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Lifecycle state of one connection."""
    CONNECTING = auto()
    UNAUTHENTICATED = auto()
    ACTIVE = auto()
    CLOSED = auto()


class ConnectionContext:
    """Per-connection state held by the server while the handler runs."""

    def __init__(self, websocket: ServerConnection):
        self.conn_id = uuid.uuid4().hex
        self.websocket = websocket
        self.state = ConnectionState.CONNECTING
        self.channel = DeliveryChannel(self.conn_id)
        self.session = Session(
            id=self.conn_id,
            name=f"guest-{self.conn_id[:6]}",
            channel=self.channel,
        )

    @property
    def remote(self) -> str:
        address = getattr(self.websocket, "remote_address", None)
        if isinstance(address, tuple) and len(address) >= 2:
            return f"{address[0]}:{address[1]}"
        return str(address)


class ChatServer:
    """
    Room-based chat server.

    Composes the dispatch engine with the background snapshot and presence
    loops and runs the websockets server.

    Example:
        server = ChatServer.create(snapshot_path="history.json", users_path="users.json")
        async with server.run("0.0.0.0", 8080):
            await asyncio.Future()
    """

    def __init__(
        self,
        engine: Optional[DispatchEngine] = None,
        snapshot_task: Optional[SnapshotTask] = None,
        presence_monitor: Optional[PresenceMonitor] = None
    ):
        """
        Args:
            engine: Dispatch engine (default components if None)
            snapshot_task: History snapshot loop; snapshots are off if None
            presence_monitor: Active/idle classifier (default if None)
        """
        self.engine = engine or DispatchEngine()
        self._snapshot_task = snapshot_task
        self._presence_monitor = presence_monitor or PresenceMonitor(self.engine.registry)
        self._connections: Dict[str, ConnectionContext] = {}
        self._server = None
        self._host: Optional[str] = None
        self._port: Optional[int] = None
        self._running = False

    @classmethod
    def create(
        cls,
        snapshot_path: Optional[str] = None,
        users_path: Optional[str] = None,
        enable_previews: bool = True
    ) -> 'ChatServer':
        """Build a server with file-backed accounts and snapshots."""
        engine = DispatchEngine(
            credentials=JsonCredentialStore(users_path or config.USER_DB_FILE),
            preview_fetcher=LinkPreviewFetcher() if enable_previews else None,
        )
        snapshot_task = SnapshotTask(
            engine.rooms,
            engine.private,
            JsonSnapshotStore(snapshot_path or config.SNAPSHOT_FILE),
        )
        return cls(engine=engine, snapshot_task=snapshot_task)

    @property
    def port(self) -> Optional[int]:
        """Bound port (the real one when started on port 0)."""
        return self._port

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @asynccontextmanager
    async def run(self, host: str = None, port: int = None):
        """
        Run the server as an async context manager.

        Yields:
            The server instance
        """
        await self.start(host, port)
        try:
            yield self
        finally:
            await self.stop()

    async def start(self, host: str = None, port: int = None) -> None:
        """
        Restore history, start background loops and begin accepting.

        Args:
            host: Interface to bind (``config.DEFAULT_HOST`` if None)
            port: Port to listen on; 0 picks a free port
        """
        self._host = host if host is not None else config.DEFAULT_HOST
        port = port if port is not None else config.DEFAULT_SERVER_PORT

        if self._snapshot_task is not None:
            await self._snapshot_task.restore()
            await self._snapshot_task.start()
        await self._presence_monitor.start()

        self._server = await websockets.serve(self._handle_connection, self._host, port)
        sockets = list(self._server.sockets)
        self._port = sockets[0].getsockname()[1] if sockets else port
        self._running = True

        logger.info("WebSocket server started on ws://%s:%s", self._host, self._port)

    async def stop(self) -> None:
        """Close every connection, stop background loops, write a final snapshot."""
        self._running = False

        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        await self._presence_monitor.stop()
        await self.engine.close()
        if self._snapshot_task is not None:
            await self._snapshot_task.stop()

        logger.info("WebSocket server stopped")

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Run one connection from upgrade to close."""
        ctx = ConnectionContext(websocket)
        self._connections[ctx.conn_id] = ctx
        ctx.channel.start_forwarding(websocket)
        ctx.state = ConnectionState.UNAUTHENTICATED
        ctx.session.notify(WELCOME)
        logger.debug("Connection %s from %s", ctx.conn_id, ctx.remote, extra={"conn_id": ctx.conn_id})

        try:
            if await self._authenticate(ctx):
                ctx.state = ConnectionState.ACTIVE
                await self._message_loop(ctx)
        except websockets.exceptions.ConnectionClosed:
            logger.debug("Connection closed for %s", ctx.session.name)
        except Exception as e:
            logger.exception("Error handling connection: %s", e,
                             extra={"conn_id": ctx.conn_id, "user": ctx.session.name})
        finally:
            await self._cleanup_connection(ctx)

    async def _authenticate(self, ctx: ConnectionContext) -> bool:
        """Read frames until the connection picks a name; False if it closes first."""
        async for raw in ctx.websocket:
            if isinstance(raw, bytes):
                logger.debug("Binary frame on %s ignored", ctx.conn_id)
                continue
            try:
                if await self.engine.handle_unauthenticated(ctx.session, raw):
                    return True
            except Exception as e:
                logger.exception("Error processing message: %s", e)
        return False

    async def _message_loop(self, ctx: ConnectionContext) -> None:
        """Main message processing loop for an admitted connection."""
        async for raw in ctx.websocket:
            if isinstance(raw, bytes):
                logger.debug("Binary frame on %s ignored", ctx.conn_id)
                continue
            try:
                await self.engine.handle_frame(ctx.session, raw)
            except Exception as e:
                logger.exception("Error processing message: %s", e)
            if ctx.session.id not in self.engine.registry:
                break

    async def _cleanup_connection(self, ctx: ConnectionContext) -> None:
        """Leave the registry, then flush and stop the delivery channel."""
        if ctx.state == ConnectionState.ACTIVE:
            self.engine.depart(ctx.session)
        ctx.state = ConnectionState.CLOSED
        ctx.channel.close()
        try:
            await ctx.channel.wait_closed()
        finally:
            self._connections.pop(ctx.conn_id, None)
        logger.debug("Connection %s closed", ctx.conn_id)


async def create_server(
    host: str = None,
    port: int = None,
    snapshot_path: Optional[str] = None,
    users_path: Optional[str] = None
) -> ChatServer:
    """Create and start a server."""
    server = ChatServer.create(snapshot_path=snapshot_path, users_path=users_path)
    await server.start(host, port)
    return server


__all__ = ['ChatServer', 'ConnectionContext', 'ConnectionState', 'create_server']
