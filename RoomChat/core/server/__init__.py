"""
Server module for RoomChat.

Architecture Overview:
---------------------

1. **Sessions** (`session/`)
   - Session: per-connection chat state (name, room, flags, rate limit)
   - SessionRegistry: live sessions, unique names, room broadcast
   - RateLimitWindow: sliding-window message limiter

2. **Transport** (`transport/`)
   - DeliveryChannel: unbounded outbound queue + forwarding task

3. **Rooms** (`rooms/`)
   - RoomStore: bounded message log per room
   - PrivateStore: bounded log per pair of participants

4. **Commands** (`commands/`)
   - CommandHandler / CommandRegistry / CommandProcessor for slash directives

5. **Dispatch** (`dispatch.py`)
   - DispatchEngine: applies inbound envelopes to the registry and stores

6. **Collaborators**
   - JsonCredentialStore (`auth/`): bcrypt accounts in a JSON file
   - LinkPreviewFetcher (`preview.py`): Open Graph previews over aiohttp
   - JsonSnapshotStore / SnapshotTask (`persistence.py`): history snapshots
   - PresenceMonitor (`presence.py`): active/idle classification
   - ServerStats (`stats.py`): counters for /stats

7. **Server** (`websocket_manager.py`)
   - ChatServer: websockets server and per-connection lifecycle

Usage:

    from RoomChat.core.server import ChatServer

    server = ChatServer.create()
    async with server.run("0.0.0.0", 8080):
        await asyncio.Future()
"""

from RoomChat.core.server.auth import JsonCredentialStore
from RoomChat.core.server.commands import (
    CommandContext,
    CommandHandler,
    CommandProcessor,
    CommandRegistry,
    create_default_processor,
)
from RoomChat.core.server.dispatch import DispatchEngine
from RoomChat.core.server.interfaces import (
    AuthResult,
    ContentFilter,
    CredentialStore,
    LinkPreview,
    PreviewFetcher,
    ServerLifecycle,
    SnapshotData,
    SnapshotStore,
)
from RoomChat.core.server.persistence import JsonSnapshotStore, SnapshotTask
from RoomChat.core.server.presence import PresenceMonitor
from RoomChat.core.server.preview import LinkPreviewFetcher
from RoomChat.core.server.rooms import MessageLog, PrivateStore, RoomStore
from RoomChat.core.server.session import RateLimitWindow, Session, SessionRegistry
from RoomChat.core.server.stats import ServerStats
from RoomChat.core.server.transport import DeliveryChannel
from RoomChat.core.server.utils.helpers import ProfanityFilter
from RoomChat.core.server.websocket_manager import (
    ChatServer,
    ConnectionContext,
    ConnectionState,
    create_server,
)

__all__ = [
    'AuthResult',
    'ContentFilter',
    'CredentialStore',
    'LinkPreview',
    'PreviewFetcher',
    'ServerLifecycle',
    'SnapshotData',
    'SnapshotStore',

    'Session',
    'SessionRegistry',
    'RateLimitWindow',
    'DeliveryChannel',
    'MessageLog',
    'RoomStore',
    'PrivateStore',

    'CommandContext',
    'CommandHandler',
    'CommandProcessor',
    'CommandRegistry',
    'create_default_processor',

    'DispatchEngine',
    'JsonCredentialStore',
    'LinkPreviewFetcher',
    'JsonSnapshotStore',
    'SnapshotTask',
    'PresenceMonitor',
    'ProfanityFilter',
    'ServerStats',

    'ChatServer',
    'ConnectionContext',
    'ConnectionState',
    'create_server',
]
