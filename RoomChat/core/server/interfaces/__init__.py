"""
Interfaces for the collaborators the chat core depends on.

The dispatch engine and connection driver only talk to these protocols,
so tests can substitute in-memory fakes for the bcrypt user file, the
HTTP preview fetcher and the snapshot file.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from RoomChat.core.message.protocol import ChatMessage


@dataclass
class AuthResult:
    """Result of a register or login attempt."""
    success: bool
    username: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None


@dataclass
class LinkPreview:
    """Metadata scraped from a linked page."""
    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None


@dataclass
class SnapshotData:
    """Contents of a history snapshot."""
    rooms: Dict[str, List['ChatMessage']]
    private: Dict[str, List['ChatMessage']]


@runtime_checkable
class CredentialStore(Protocol):
    """Protocol for persistent username/password storage."""

    @abstractmethod
    async def register(self, username: str, password: str) -> AuthResult:
        """Create an account; duplicates fail with error_code ``DUPLICATE``."""
        ...

    @abstractmethod
    async def verify(self, username: str, password: str) -> bool:
        """Check a password against the stored hash."""
        ...


@runtime_checkable
class ContentFilter(Protocol):
    """Protocol for chat body filtering."""

    @abstractmethod
    def filter(self, text: str) -> str:
        ...


@runtime_checkable
class PreviewFetcher(Protocol):
    """Protocol for link preview lookups."""

    @abstractmethod
    async def fetch(self, url: str) -> Optional[LinkPreview]:
        """Return a preview, or None when the page has nothing usable."""
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class SnapshotStore(Protocol):
    """Protocol for durable history snapshots."""

    @abstractmethod
    async def load(self) -> Optional[SnapshotData]:
        ...

    @abstractmethod
    async def save(self, data: SnapshotData) -> None:
        ...


class ServerLifecycle(ABC):
    """Abstract base class for things started and stopped with the server."""

    @abstractmethod
    async def start(self) -> None:
        pass

    @abstractmethod
    async def stop(self) -> None:
        pass


__all__ = [
    'AuthResult',
    'LinkPreview',
    'SnapshotData',
    'CredentialStore',
    'ContentFilter',
    'PreviewFetcher',
    'SnapshotStore',
    'ServerLifecycle',
]
