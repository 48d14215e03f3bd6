"""
Test configuration and fixtures for RoomChat server tests.

Provides:
- Server configuration for testing
- In-memory collaborators (credential store, preview fetcher)
- Helpers that admit sessions and read their queued frames
- A live server fixture on a free port
"""

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from RoomChat.core.server.dispatch import DispatchEngine
from RoomChat.core.server.interfaces import AuthResult, LinkPreview
from RoomChat.core.server.persistence import JsonSnapshotStore, SnapshotTask
from RoomChat.core.server.session import Session
from RoomChat.core.server.transport import DeliveryChannel
from RoomChat.core.server.utils.helpers import ProfanityFilter
from RoomChat.core.server.websocket_manager import ChatServer


@dataclass
class TestConfig:
    """Configuration for server tests."""
    host: str = "127.0.0.1"
    timeout: float = 5.0
    profanity: tuple = ("darn", "heck")

    def ws_url(self, port: int) -> str:
        return f"ws://{self.host}:{port}"


class MemoryCredentialStore:
    """Plain-text credential store for tests."""

    def __init__(self, users: Optional[Dict[str, str]] = None):
        self.users: Dict[str, str] = dict(users or {})

    async def register(self, username: str, password: str) -> AuthResult:
        if username in self.users:
            return AuthResult(
                success=False,
                username=username,
                error_message="username already exists",
                error_code="DUPLICATE"
            )
        self.users[username] = password
        return AuthResult(success=True, username=username)

    async def verify(self, username: str, password: str) -> bool:
        return self.users.get(username) == password


@dataclass
class StaticPreviewFetcher:
    """Preview fetcher that answers every URL with the same metadata."""
    title: str = "Example Domain"
    description: str = "An example page"
    image: str = ""
    requested: List[str] = field(default_factory=list)
    closed: bool = False

    async def fetch(self, url: str) -> Optional[LinkPreview]:
        self.requested.append(url)
        return LinkPreview(url=url, title=self.title, description=self.description, image=self.image)

    async def close(self) -> None:
        self.closed = True


class SessionHelper:
    """Create sessions and inspect what the server queued for them."""

    @staticmethod
    def new_session(name: str = "guest") -> Session:
        conn_id = uuid.uuid4().hex
        return Session(id=conn_id, name=name, channel=DeliveryChannel(conn_id))

    @staticmethod
    def join(engine: DispatchEngine, name: str, authenticated: bool = False) -> Session:
        """Admit and welcome a session the way /name and /login do."""
        session = SessionHelper.new_session()
        engine.admit(session, name, authenticated=authenticated)
        engine.welcome(session)
        return session

    @staticmethod
    def frames(session: Session) -> List[Dict[str, Any]]:
        """Decode and clear every frame queued for ``session``."""
        return [json.loads(raw) for raw in session.channel.drain()]

    @staticmethod
    def of_type(frames: List[Dict[str, Any]], kind: str) -> List[Dict[str, Any]]:
        return [f for f in frames if f["type"] == kind]

    @staticmethod
    def system_texts(frames: List[Dict[str, Any]]) -> List[str]:
        return [f["text"] for f in frames if f["type"] == "system"]


@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Provide test configuration."""
    return TestConfig()


@pytest.fixture
def helper() -> SessionHelper:
    return SessionHelper()


@pytest.fixture
def credentials() -> MemoryCredentialStore:
    return MemoryCredentialStore({"admin": "s3cret"})


@pytest.fixture
def engine(credentials: MemoryCredentialStore, test_config: TestConfig) -> DispatchEngine:
    """Dispatch engine with in-memory collaborators and previews off."""
    return DispatchEngine(
        credentials=credentials,
        content_filter=ProfanityFilter(test_config.profanity),
    )


@pytest_asyncio.fixture
async def server_instance(tmp_path, credentials: MemoryCredentialStore, test_config: TestConfig):
    """Start a server on a free port with a temporary snapshot file."""
    engine = DispatchEngine(credentials=credentials)
    snapshot_task = SnapshotTask(
        engine.rooms,
        engine.private,
        JsonSnapshotStore(str(tmp_path / "history.json")),
    )
    server = ChatServer(engine=engine, snapshot_task=snapshot_task)
    await server.start(test_config.host, 0)

    yield server

    await server.stop()


async def recv_until(ws, predicate, timeout: float = 5.0) -> Dict[str, Any]:
    """Read frames from ``ws`` until one satisfies ``predicate``."""
    async def _read():
        while True:
            frame = json.loads(await ws.recv())
            if predicate(frame):
                return frame

    return await asyncio.wait_for(_read(), timeout)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
