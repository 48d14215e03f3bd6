"""
Room and private conversation storage.

Both stores map a key to a bounded FIFO ``MessageLog``. Rooms are keyed by
their (case-sensitive) name, private conversations by the sorted pair of
lowercased participant names. Each store has its own lock; nothing inside
a locked section awaits.
"""

import logging
import threading
from collections import deque
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from RoomChat.config import config
from RoomChat.core.exceptions import AuthorizationError, NotFoundError
from RoomChat.core.message.protocol import ChatMessage

logger = logging.getLogger(__name__)


class MessageLog:
    """Capacity-bounded, insertion-ordered message log."""

    def __init__(self, capacity: int):
        self.capacity = capacity
        self._items: deque = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(self._items)

    def append(self, message: ChatMessage) -> Optional[ChatMessage]:
        """Append a message; returns the evicted oldest entry, if any."""
        evicted = self._items[0] if len(self._items) == self.capacity else None
        self._items.append(message)
        return evicted

    def find(self, msg_id: str) -> Optional[ChatMessage]:
        """Find by id, including soft-deleted messages."""
        for message in self._items:
            if message.id == msg_id:
                return message
        return None

    def visible(self) -> List[ChatMessage]:
        """Messages shown in history replay."""
        return [m for m in self._items if not m.deleted]


class _LogStore:
    """Keyed collection of message logs guarded by one lock."""

    def __init__(self, capacity: int = None):
        self.capacity = capacity or config.HISTORY_CAPACITY
        self._logs: Dict[str, MessageLog] = {}
        self._lock = threading.RLock()

    def _log(self, key: str) -> MessageLog:
        log = self._logs.get(key)
        if log is None:
            log = self._logs[key] = MessageLog(self.capacity)
        return log

    def ensure(self, key: str) -> bool:
        """Create the log for ``key`` if missing; True if it was created."""
        with self._lock:
            if key in self._logs:
                return False
            self._logs[key] = MessageLog(self.capacity)
            return True

    def append(
        self,
        key: str,
        message: ChatMessage,
        deliver: Optional[Callable[[ChatMessage], None]] = None
    ) -> ChatMessage:
        """
        Append ``message`` to the log for ``key``.

        ``deliver`` runs inside the same locked section, which makes the
        delivery order of a log equal to its append order. It must only
        enqueue.
        """
        with self._lock:
            evicted = self._log(key).append(message)
            if deliver is not None:
                deliver(message)
        if evicted is not None:
            logger.debug("Evicted message %s from %s", evicted.id, key)
        return message

    def history(self, key: str) -> List[ChatMessage]:
        with self._lock:
            log = self._logs.get(key)
            return log.visible() if log else []

    def find(self, key: str, msg_id: str) -> Optional[ChatMessage]:
        with self._lock:
            log = self._logs.get(key)
            return log.find(msg_id) if log else None

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._logs.keys())

    def count(self, key: str) -> int:
        with self._lock:
            log = self._logs.get(key)
            return len(log) if log else 0

    def total_messages(self) -> int:
        with self._lock:
            return sum(len(log) for log in self._logs.values())

    def export(self) -> Dict[str, List[ChatMessage]]:
        """Copy of every log, deleted entries included."""
        with self._lock:
            return {
                key: [ChatMessage.from_dict(m.to_dict()) for m in log]
                for key, log in self._logs.items()
            }

    def restore(self, data: Dict[str, Iterable[ChatMessage]]) -> int:
        """
        Replace logs with snapshot contents.

        Returns:
            Number of messages loaded
        """
        loaded = 0
        with self._lock:
            for key, messages in data.items():
                log = MessageLog(self.capacity)
                for message in messages:
                    log.append(message)
                self._logs[key] = log
                loaded += len(log)
        return loaded


class RoomStore(_LogStore):
    """
    Message logs for every room.

    The default room always exists. Rooms are created on first join or
    message and never removed.
    """

    def __init__(self, capacity: int = None, default_room: str = None):
        super().__init__(capacity)
        self.default_room = default_room or config.DEFAULT_ROOM
        self.ensure(self.default_room)

    def rooms(self) -> List[str]:
        return self.keys()

    def toggle_reaction(self, room: str, msg_id: str, emoji: str, user: str) -> Optional[bool]:
        """
        Toggle ``user``'s reaction on a message.

        Returns:
            True if added, False if removed, None if the message is unknown or deleted
        """
        with self._lock:
            message = self.find(room, msg_id)
            if message is None or message.deleted:
                return None
            return message.toggle_reaction(emoji, user)

    def edit(self, room: str, msg_id: str, author: str, new_text: str) -> ChatMessage:
        """
        Replace the body of the author's own message.

        Raises:
            NotFoundError: Unknown or deleted message
            AuthorizationError: Requester is not the author
        """
        with self._lock:
            message = self.find(room, msg_id)
            if message is None or message.deleted:
                raise NotFoundError("Cannot edit this message", author)
            if message.author != author:
                raise AuthorizationError("Cannot edit this message", author)
            message.text = new_text
            message.edited = True
            return message

    def delete(self, room: str, msg_id: str, author: str) -> ChatMessage:
        """
        Soft-delete the author's own message. Deleting twice succeeds.

        Raises:
            NotFoundError: Unknown message
            AuthorizationError: Requester is not the author
        """
        with self._lock:
            message = self.find(room, msg_id)
            if message is None:
                raise NotFoundError("Cannot delete this message", author)
            if message.author != author:
                raise AuthorizationError("Cannot delete this message", author)
            message.deleted = True
            return message

    def listing(self, member_counts: Dict[str, int]) -> List[Tuple[str, int]]:
        """(room, live members) pairs, sorted by room name."""
        return [(room, member_counts.get(room, 0)) for room in sorted(self.rooms())]


class PrivateStore(_LogStore):
    """Message logs for one-to-one conversations."""

    @staticmethod
    def key_for(a: str, b: str) -> str:
        """Order-independent key for a pair of names."""
        return ",".join(sorted((a.lower(), b.lower())))

    def append_between(
        self,
        a: str,
        b: str,
        message: ChatMessage,
        deliver: Optional[Callable[[ChatMessage], None]] = None
    ) -> ChatMessage:
        return self.append(self.key_for(a, b), message, deliver)

    def history_between(self, a: str, b: str) -> List[ChatMessage]:
        return self.history(self.key_for(a, b))


__all__ = ['MessageLog', 'RoomStore', 'PrivateStore']
