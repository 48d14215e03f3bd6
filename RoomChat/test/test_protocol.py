"""
Unit tests for envelope parsing and the stored message unit.
"""

import json

import pytest

from RoomChat.core.exceptions import ProtocolError
from RoomChat.core.message.protocol import (
    ChatMessage,
    Incoming,
    IncomingType,
    Outgoing,
    generate_message_id,
)


class TestIncoming:
    """Tests for inbound envelope decoding."""

    def test_chat_envelope(self):
        incoming = Incoming.deserialize('{"type": "msg", "text": "hello"}')
        assert incoming.type == IncomingType.MSG
        assert incoming.text == "hello"

    def test_command_envelope(self):
        incoming = Incoming.deserialize('{"type": "cmd", "cmd": "/join dev"}')
        assert incoming.type == IncomingType.CMD
        assert incoming.cmd == "/join dev"

    def test_every_kind_with_its_fields(self):
        frames = {
            IncomingType.TYPING: {"type": "typing", "is_typing": True},
            IncomingType.REACT: {"type": "react", "msg_id": "a-1", "emoji": "👍"},
            IncomingType.EDIT: {"type": "edit", "msg_id": "a-1", "new_text": "fixed"},
            IncomingType.DELETE: {"type": "delete", "msg_id": "a-1"},
            IncomingType.MARKREAD: {"type": "markread", "last_msg_id": "a-1"},
        }
        for kind, frame in frames.items():
            assert Incoming.deserialize(json.dumps(frame)).type == kind

    def test_extra_fields_ignored(self):
        incoming = Incoming.deserialize('{"type": "delete", "msg_id": "x", "junk": 1}')
        assert incoming.msg_id == "x"

    @pytest.mark.parametrize("raw", [
        "hello there",
        "[1, 2]",
        '{"type": "shout", "text": "hi"}',
        '{"text": "no type"}',
        '{"type": "msg"}',
        '{"type": "msg", "text": 5}',
        '{"type": "typing", "is_typing": "yes"}',
        '{"type": "react", "msg_id": "a-1"}',
    ])
    def test_invalid_frames_rejected(self, raw):
        with pytest.raises(ProtocolError) as exc_info:
            Incoming.deserialize(raw)
        assert exc_info.value.raw == raw


class TestChatMessage:
    """Tests for ChatMessage."""

    def test_ids_are_unique(self):
        ids = {generate_message_id() for _ in range(500)}
        assert len(ids) == 500

    def test_system_message_author(self):
        message = ChatMessage.system("-- bob joined the room --")
        assert message.author == "system"
        assert message.edited is False
        assert message.deleted is False

    def test_reaction_toggle_returns_to_original_state(self):
        message = ChatMessage.create("alice", "hi")
        before = message.to_dict()

        assert message.toggle_reaction("👍", "bob") is True
        assert message.reactions == {"👍": ["bob"]}
        assert message.toggle_reaction("👍", "bob") is False

        assert message.reactions == {}
        assert message.to_dict() == before

    def test_reactions_keep_insertion_order(self):
        message = ChatMessage.create("alice", "hi")
        message.toggle_reaction("🎉", "bob")
        message.toggle_reaction("🎉", "carol")
        message.toggle_reaction("🎉", "bob")
        assert message.reactions == {"🎉": ["carol"]}

    def test_history_item_form(self):
        message = ChatMessage(id="1-1", author="alice", text="hi", ts=1700000000)
        assert message.to_dict() == {
            "id": "1-1",
            "from": "alice",
            "text": "hi",
            "ts": 1700000000,
            "reactions": {},
            "edited": False,
            "deleted": False,
        }
        assert ChatMessage.from_dict(message.to_dict()) == message


class TestOutgoing:
    """Tests for server envelopes."""

    def test_system_envelope(self):
        assert json.loads(Outgoing.system("hello").serialize()) == {"type": "system", "text": "hello"}

    def test_chat_envelope_marks_private(self):
        message = ChatMessage.create("alice", "psst")
        frame = json.loads(Outgoing.chat(message, private=True).serialize())
        assert frame["type"] == "msg"
        assert frame["from"] == "alice"
        assert frame["private"] is True
        assert "deleted" not in frame

    def test_non_ascii_kept_verbatim(self):
        raw = Outgoing.system("héllo 👋").serialize()
        assert "héllo 👋" in raw

    def test_room_list_envelope(self):
        frame = Outgoing.room_list([("dev", 2), ("lobby", 0)]).to_dict()
        assert frame == {
            "type": "roomlist",
            "rooms": [{"name": "dev", "members": 2}, {"name": "lobby", "members": 0}],
        }

    def test_link_preview_envelope(self):
        frame = Outgoing.link_preview("m-1", "https://example.com", "Example", "", "").to_dict()
        assert frame["type"] == "linkpreview"
        assert frame["msg_id"] == "m-1"
        assert frame["url"] == "https://example.com"
