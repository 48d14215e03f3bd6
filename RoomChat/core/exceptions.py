"""
Exception classes for the chat server.

Every error a connection can provoke derives from ``ChatError``. Handlers
turn these into a private ``system`` notice for the requester; none of them
is fatal to the server process.
"""


class ChatError(Exception):
    """Base exception for all chat errors."""

    def __init__(self, message: str, username: str = None):
        """
        Initialize chat error.

        Args:
            message: Human readable message, sent back to the client as-is
            username: Display name of the session that caused the error
        """
        self.username = username
        super().__init__(message)

    @property
    def message(self) -> str:
        return self.args[0] if self.args else ""

    def __str__(self) -> str:
        if self.username:
            return f"[{self.username}] {super().__str__()}"
        return super().__str__()


class ProtocolError(ChatError):
    """Raised when an inbound frame is not a valid envelope."""

    def __init__(self, message: str, raw: str = None):
        self.raw = raw
        super().__init__(message)


class AuthorizationError(ChatError):
    """Raised when a session may not perform an operation."""
    pass


class NotFoundError(ChatError):
    """Raised when a referenced message, user or room does not exist."""
    pass


class RateLimitedError(ChatError):
    """Raised when a session exceeds its message rate."""

    def __init__(self, limit: int, window: float, username: str = None):
        self.limit = limit
        self.window = window
        super().__init__(
            f"Rate limited: slow down! Max {limit} messages per {window:g} seconds.",
            username
        )


class PersistenceError(ChatError):
    """Raised when the history snapshot cannot be read or written."""

    def __init__(self, message: str, path: str = None):
        self.path = path
        super().__init__(message)

    def __str__(self) -> str:
        if self.path:
            return f"{super().__str__()} ({self.path})"
        return super().__str__()


__all__ = [
    'ChatError',
    'ProtocolError',
    'AuthorizationError',
    'NotFoundError',
    'RateLimitedError',
    'PersistenceError',
]
