"""
Message protocol module for RoomChat.

Defines the stored message unit and the JSON envelopes exchanged with
clients. Every envelope is a JSON object whose ``type`` field selects the
kind; inbound and outbound kinds are closed sets.
"""

import itertools
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from RoomChat.core.exceptions import ProtocolError

SYSTEM_AUTHOR = "system"

_id_counter = itertools.count(1)


def generate_message_id() -> str:
    """
    Generate a compact message id.

    Format is ``<unix-ms hex>-<sequence hex>``; the sequence is per process,
    so ids sort in generation order within a run and do not repeat across
    restarts.
    """
    return f"{int(time.time() * 1000):x}-{next(_id_counter):x}"


class IncomingType(Enum):
    """Envelope kinds sent by clients."""
    CMD = "cmd"
    MSG = "msg"
    TYPING = "typing"
    REACT = "react"
    EDIT = "edit"
    DELETE = "delete"
    MARKREAD = "markread"


class OutgoingType(Enum):
    """Envelope kinds sent by the server."""
    SYSTEM = "system"
    MSG = "msg"
    LIST = "list"
    HISTORY = "history"
    TYPING = "typing"
    REACTION = "reaction"
    EDIT = "edit"
    DELETE = "delete"
    READRECEIPT = "readreceipt"
    MENTION = "mention"
    ROOMLIST = "roomlist"
    STATUS = "status"
    NUDGE = "nudge"
    LINKPREVIEW = "linkpreview"


@dataclass
class ChatMessage:
    """
    A message stored in a room or private conversation log.

    Attributes:
        id: Unique message id
        author: Display name of the sender at posting time
        text: Message body (already filtered)
        ts: Creation time, unix seconds
        reactions: Symbol -> names of users who reacted with it
        edited: Set once the author changed the body
        deleted: Soft-delete flag; deleted messages stay addressable by id
    """
    id: str
    author: str
    text: str
    ts: int
    reactions: Dict[str, List[str]] = field(default_factory=dict)
    edited: bool = False
    deleted: bool = False

    @classmethod
    def create(cls, author: str, text: str) -> 'ChatMessage':
        """Create a new message with a fresh id and the current time."""
        return cls(id=generate_message_id(), author=author, text=text, ts=int(time.time()))

    @classmethod
    def system(cls, text: str) -> 'ChatMessage':
        """Create a system announcement."""
        return cls.create(SYSTEM_AUTHOR, text)

    def toggle_reaction(self, emoji: str, user: str) -> bool:
        """
        Add or remove ``user`` under ``emoji``.

        Returns:
            True if the reaction was added, False if it was removed
        """
        users = self.reactions.get(emoji)
        if users and user in users:
            users.remove(user)
            if not users:
                del self.reactions[emoji]
            return False
        self.reactions.setdefault(emoji, []).append(user)
        return True

    def to_dict(self) -> Dict[str, Any]:
        """History item form, also used by the snapshot file."""
        return {
            "id": self.id,
            "from": self.author,
            "text": self.text,
            "ts": self.ts,
            "reactions": {emoji: list(users) for emoji, users in self.reactions.items()},
            "edited": self.edited,
            "deleted": self.deleted,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChatMessage':
        return cls(
            id=data["id"],
            author=data["from"],
            text=data["text"],
            ts=int(data["ts"]),
            reactions={k: list(v) for k, v in data.get("reactions", {}).items()},
            edited=bool(data.get("edited", False)),
            deleted=bool(data.get("deleted", False)),
        )


# Required fields and their JSON types, per inbound kind.
_INCOMING_FIELDS: Dict[IncomingType, Tuple[Tuple[str, type], ...]] = {
    IncomingType.CMD: (("cmd", str),),
    IncomingType.MSG: (("text", str),),
    IncomingType.TYPING: (("is_typing", bool),),
    IncomingType.REACT: (("msg_id", str), ("emoji", str)),
    IncomingType.EDIT: (("msg_id", str), ("new_text", str)),
    IncomingType.DELETE: (("msg_id", str),),
    IncomingType.MARKREAD: (("last_msg_id", str),),
}


@dataclass
class Incoming:
    """
    A decoded client envelope.

    Only the fields belonging to ``type`` are populated.
    """
    type: IncomingType
    cmd: Optional[str] = None
    text: Optional[str] = None
    is_typing: bool = False
    msg_id: Optional[str] = None
    emoji: Optional[str] = None
    new_text: Optional[str] = None
    last_msg_id: Optional[str] = None

    @classmethod
    def deserialize(cls, data: str) -> 'Incoming':
        """
        Decode a client frame.

        Args:
            data: Raw text frame

        Returns:
            Incoming envelope

        Raises:
            ProtocolError: Invalid JSON, unknown ``type`` or missing fields
        """
        try:
            obj = json.loads(data)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Invalid JSON: {e}", raw=data) from e

        if not isinstance(obj, dict):
            raise ProtocolError("Envelope must be a JSON object", raw=data)

        try:
            kind = IncomingType(obj.get("type"))
        except ValueError:
            raise ProtocolError(f"Unknown envelope type: {obj.get('type')!r}", raw=data) from None

        values = {}
        for name, expected in _INCOMING_FIELDS[kind]:
            value = obj.get(name)
            if not isinstance(value, expected):
                raise ProtocolError(f"Missing or invalid field '{name}' for '{kind.value}'", raw=data)
            values[name] = value

        return cls(type=kind, **values)


@dataclass
class Outgoing:
    """
    A server envelope.

    Build instances with the classmethods below and call ``serialize``
    once; the same text is then enqueued to every recipient.
    """
    type: OutgoingType
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, **self.payload}

    def serialize(self) -> str:
        """
        Serialize the envelope to a JSON string.

        Returns:
            str: JSON text frame
        """
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def system(cls, text: str) -> 'Outgoing':
        return cls(OutgoingType.SYSTEM, {"text": text})

    @classmethod
    def chat(cls, message: ChatMessage, private: bool = False) -> 'Outgoing':
        return cls(OutgoingType.MSG, {
            "id": message.id,
            "from": message.author,
            "text": message.text,
            "ts": message.ts,
            "reactions": {emoji: list(users) for emoji, users in message.reactions.items()},
            "edited": message.edited,
            "private": private,
        })

    @classmethod
    def user_list(cls, users: Iterable[str]) -> 'Outgoing':
        return cls(OutgoingType.LIST, {"users": list(users)})

    @classmethod
    def history(cls, messages: Iterable[ChatMessage]) -> 'Outgoing':
        return cls(OutgoingType.HISTORY, {"items": [m.to_dict() for m in messages]})

    @classmethod
    def typing(cls, users: Iterable[str]) -> 'Outgoing':
        return cls(OutgoingType.TYPING, {"users": list(users)})

    @classmethod
    def reaction(cls, msg_id: str, emoji: str, user: str, added: bool) -> 'Outgoing':
        return cls(OutgoingType.REACTION, {"msg_id": msg_id, "emoji": emoji, "user": user, "added": added})

    @classmethod
    def edit(cls, msg_id: str, new_text: str) -> 'Outgoing':
        return cls(OutgoingType.EDIT, {"msg_id": msg_id, "new_text": new_text})

    @classmethod
    def delete(cls, msg_id: str) -> 'Outgoing':
        return cls(OutgoingType.DELETE, {"msg_id": msg_id})

    @classmethod
    def read_receipt(cls, user: str, last_msg_id: str) -> 'Outgoing':
        return cls(OutgoingType.READRECEIPT, {"user": user, "last_msg_id": last_msg_id})

    @classmethod
    def mention(cls, sender: str, text: str, mentioned: str) -> 'Outgoing':
        return cls(OutgoingType.MENTION, {"from": sender, "text": text, "mentioned": mentioned})

    @classmethod
    def room_list(cls, rooms: Iterable[Tuple[str, int]]) -> 'Outgoing':
        return cls(OutgoingType.ROOMLIST, {
            "rooms": [{"name": name, "members": members} for name, members in rooms]
        })

    @classmethod
    def status(cls, user: str, status: str) -> 'Outgoing':
        return cls(OutgoingType.STATUS, {"user": user, "status": status})

    @classmethod
    def nudge(cls, sender: str) -> 'Outgoing':
        return cls(OutgoingType.NUDGE, {"from": sender})

    @classmethod
    def link_preview(
        cls,
        msg_id: str,
        url: str,
        title: Optional[str],
        description: Optional[str],
        image: Optional[str]
    ) -> 'Outgoing':
        return cls(OutgoingType.LINKPREVIEW, {
            "msg_id": msg_id,
            "title": title,
            "description": description,
            "image": image,
            "url": url,
        })


__all__ = [
    'SYSTEM_AUTHOR',
    'generate_message_id',
    'IncomingType',
    'OutgoingType',
    'ChatMessage',
    'Incoming',
    'Outgoing',
]
