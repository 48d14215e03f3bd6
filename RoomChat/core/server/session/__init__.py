"""
Session management module for the server.

A ``Session`` exists for every connection that finished the name/login
phase. The ``SessionRegistry`` maps connection ids to sessions, keeps
display names unique (case-insensitive) and fans envelopes out to every
session in a room.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from RoomChat.config import config
from RoomChat.core.exceptions import NotFoundError
from RoomChat.core.message.protocol import SYSTEM_AUTHOR, Outgoing
from RoomChat.core.server.transport import DeliveryChannel

logger = logging.getLogger(__name__)

STATUS_ACTIVE = "active"
STATUS_IDLE = "idle"


class RateLimitWindow:
    """
    Sliding-window rate limiter.

    A message is accepted when fewer than ``limit`` accepted messages fall
    inside the last ``window`` seconds.
    """

    def __init__(
        self,
        limit: int = None,
        window: float = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.limit = limit if limit is not None else config.RATE_LIMIT_MESSAGES
        self.window = window if window is not None else config.RATE_LIMIT_WINDOW
        self._clock = clock
        self._stamps: deque = deque(maxlen=self.limit)

    def allow(self) -> bool:
        """Record an attempt; returns False if it must be dropped."""
        now = self._clock()
        while self._stamps and now - self._stamps[0] >= self.window:
            self._stamps.popleft()
        if len(self._stamps) >= self.limit:
            return False
        self._stamps.append(now)
        return True


@dataclass
class Session:
    """
    State of one live, named connection.

    Attributes:
        id: Connection id (uuid4 hex)
        name: Current display name
        channel: Outbound delivery channel
        room: Current room
        authenticated: True after /register or /login
        typing: Typing indicator flag
        last_read_msg_id: Last id acknowledged with markread
        rate_limit: Chat message rate limiter
        last_active: Unix time of the last inbound frame
        status: Last published presence status
    """
    id: str
    name: str
    channel: DeliveryChannel
    room: str = field(default_factory=lambda: config.DEFAULT_ROOM)
    authenticated: bool = False
    typing: bool = False
    last_read_msg_id: Optional[str] = None
    rate_limit: RateLimitWindow = field(default_factory=RateLimitWindow)
    last_active: float = field(default_factory=time.time)
    status: str = STATUS_ACTIVE
    created_at: float = field(default_factory=time.time)

    def touch(self) -> None:
        """Update last activity timestamp."""
        self.last_active = time.time()

    @property
    def idle_time(self) -> float:
        return time.time() - self.last_active

    def send(self, message: Union[Outgoing, str]) -> bool:
        return self.channel.send(message)

    def notify(self, text: str) -> bool:
        """Send a private system notice."""
        return self.channel.send(Outgoing.system(text))


class SessionRegistry:
    """
    Registry of live sessions keyed by connection id.

    All access goes through one re-entrant lock. Name checks and the
    assignment they guard happen inside the same locked section, so two
    sessions can never end up with the same name. Sends only enqueue.
    """

    def __init__(self, reserved_names: Iterable[str] = (SYSTEM_AUTHOR,)):
        self._sessions: Dict[str, Session] = {}
        self._reserved = {n.lower() for n in reserved_names}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def _name_taken(self, candidate: str, exclude_id: Optional[str]) -> bool:
        lowered = candidate.lower()
        if lowered in self._reserved:
            return True
        return any(
            s.name.lower() == lowered
            for sid, s in self._sessions.items()
            if sid != exclude_id
        )

    def _unique_name(self, desired: str, exclude_id: Optional[str] = None) -> str:
        candidate = desired
        suffix = 1
        while self._name_taken(candidate, exclude_id):
            candidate = f"{desired}-{suffix}"
            suffix += 1
        return candidate

    def make_unique_name(self, desired: str, exclude_id: Optional[str] = None) -> str:
        """
        Return ``desired`` or the first free ``desired-N``.

        The answer is advisory; use ``admit``/``rename`` to claim a name.
        """
        with self._lock:
            return self._unique_name(desired, exclude_id)

    def admit(self, session: Session, desired_name: str) -> str:
        """
        Insert a session under a unique version of ``desired_name``.

        Returns:
            The name actually assigned
        """
        with self._lock:
            session.name = self._unique_name(desired_name, session.id)
            self._sessions[session.id] = session
            logger.debug("Admitted session %s as %s (total %d)",
                         session.id, session.name, len(self._sessions))
            return session.name

    def rename(self, session_id: str, desired_name: str) -> Tuple[str, str]:
        """
        Give a live session a unique version of ``desired_name``.

        Returns:
            (old name, new name)

        Raises:
            NotFoundError: The session is no longer registered
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFoundError(f"Session {session_id} is not registered")
            old = session.name
            session.name = self._unique_name(desired_name, session_id)
            return old, session.name

    def remove(self, session_id: str) -> Optional[Session]:
        """Remove a session; returns it, or None if it was already gone."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.debug("Removed session %s (%s)", session_id, session.name)
        return session

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def find_by_name(self, name: str, room: Optional[str] = None) -> Optional[Session]:
        """Case-insensitive lookup, optionally restricted to one room."""
        lowered = name.lower()
        with self._lock:
            for session in self._sessions.values():
                if session.name.lower() == lowered and (room is None or session.room == room):
                    return session
        return None

    def move(self, session_id: str, room: str) -> Optional[str]:
        """
        Move a session to ``room`` and clear its typing flag.

        Returns:
            The previous room, or None if the session is gone or already there
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.room == room:
                return None
            previous = session.room
            session.room = room
            session.typing = False
            return previous

    def all_sessions(self) -> List[Session]:
        with self._lock:
            return list(self._sessions.values())

    def sessions_in_room(self, room: str) -> List[Session]:
        with self._lock:
            return [s for s in self._sessions.values() if s.room == room]

    def names_in_room(self, room: str) -> List[str]:
        return [s.name for s in self.sessions_in_room(room)]

    def typing_in_room(self, room: str) -> List[str]:
        return [s.name for s in self.sessions_in_room(room) if s.typing]

    def member_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        with self._lock:
            for session in self._sessions.values():
                counts[session.room] = counts.get(session.room, 0) + 1
        return counts

    def broadcast(
        self,
        room: str,
        message: Union[Outgoing, str],
        exclude: Optional[Iterable[str]] = None
    ) -> int:
        """
        Enqueue a frame for every session in ``room``.

        Args:
            room: Target room
            message: Envelope (serialized once) or text frame
            exclude: Session ids to skip

        Returns:
            Number of channels that accepted the frame
        """
        payload = message.serialize() if isinstance(message, Outgoing) else message
        skip = set(exclude or ())
        delivered = 0
        with self._lock:
            for session in self._sessions.values():
                if session.room == room and session.id not in skip:
                    if session.channel.send(payload):
                        delivered += 1
        return delivered

    def send_to(self, session_id: str, message: Union[Outgoing, str]) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            return False
        return session.send(message)


__all__ = [
    'STATUS_ACTIVE',
    'STATUS_IDLE',
    'RateLimitWindow',
    'Session',
    'SessionRegistry',
]
