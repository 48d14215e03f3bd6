"""
Unit tests for sessions, the session registry and rate limiting.
"""

import json

import pytest

from RoomChat.core.exceptions import NotFoundError
from RoomChat.core.message.protocol import Outgoing
from RoomChat.core.server.session import RateLimitWindow, SessionRegistry
from RoomChat.test.conftest import SessionHelper


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateLimitWindow:
    """Tests for the sliding-window limiter."""

    def test_limit_within_window(self):
        clock = FakeClock()
        limiter = RateLimitWindow(limit=5, window=10.0, clock=clock)
        assert all(limiter.allow() for _ in range(5))
        assert limiter.allow() is False

    def test_window_slides(self):
        clock = FakeClock()
        limiter = RateLimitWindow(limit=2, window=10.0, clock=clock)
        assert limiter.allow()
        clock.now = 4.0
        assert limiter.allow()
        clock.now = 9.9
        assert limiter.allow() is False
        clock.now = 10.0
        assert limiter.allow() is True
        assert limiter.allow() is False
        clock.now = 14.0
        assert limiter.allow() is True

    def test_rejected_attempts_are_not_recorded(self):
        clock = FakeClock()
        limiter = RateLimitWindow(limit=1, window=5.0, clock=clock)
        assert limiter.allow()
        for t in (1.0, 2.0, 3.0, 4.0):
            clock.now = t
            assert limiter.allow() is False
        clock.now = 5.0
        assert limiter.allow() is True


class TestSessionRegistry:
    """Tests for SessionRegistry."""

    def setup_method(self):
        self.registry = SessionRegistry()

    def admit(self, name: str, room: str = "lobby"):
        session = SessionHelper.new_session()
        session.room = room
        self.registry.admit(session, name)
        return session

    def test_unique_names_get_suffixes(self):
        assert self.admit("alice").name == "alice"
        assert self.admit("Alice").name == "Alice-1"
        assert self.admit("alice").name == "alice-2"
        assert len(self.registry) == 3

    def test_reserved_name(self):
        assert self.admit("system").name == "system-1"
        assert self.admit("SYSTEM").name == "SYSTEM-2"

    def test_suffix_skips_taken_candidates(self):
        self.admit("bob")
        self.admit("bob-1")
        assert self.admit("bob").name == "bob-2"

    def test_make_unique_name_is_advisory(self):
        self.admit("carol")
        assert self.registry.make_unique_name("carol") == "carol-1"
        assert self.registry.make_unique_name("dave") == "dave"
        assert len(self.registry) == 1

    def test_rename_to_own_name_in_other_case(self):
        session = self.admit("erin")
        assert self.registry.rename(session.id, "Erin") == ("erin", "Erin")

    def test_rename_to_taken_name(self):
        self.admit("frank")
        session = self.admit("gina")
        assert self.registry.rename(session.id, "FRANK") == ("gina", "FRANK-1")

    def test_rename_unknown_session(self):
        with pytest.raises(NotFoundError):
            self.registry.rename("missing", "x")

    def test_remove_twice(self):
        session = self.admit("hank")
        assert self.registry.remove(session.id) is session
        assert self.registry.remove(session.id) is None
        assert session.id not in self.registry

    def test_find_by_name_case_insensitive_and_room_scoped(self):
        session = self.admit("Ivy", room="dev")
        assert self.registry.find_by_name("ivy") is session
        assert self.registry.find_by_name("ivy", room="dev") is session
        assert self.registry.find_by_name("ivy", room="lobby") is None

    def test_move_clears_typing(self):
        session = self.admit("jack")
        session.typing = True
        assert self.registry.move(session.id, "dev") == "lobby"
        assert session.room == "dev"
        assert session.typing is False
        assert self.registry.move(session.id, "dev") is None

    def test_member_counts_and_names(self):
        self.admit("a")
        self.admit("b")
        self.admit("c", room="dev")
        assert self.registry.member_counts() == {"lobby": 2, "dev": 1}
        assert self.registry.names_in_room("lobby") == ["a", "b"]

    def test_broadcast_is_room_scoped(self):
        first = self.admit("k1")
        second = self.admit("k2")
        other = self.admit("k3", room="dev")

        delivered = self.registry.broadcast("lobby", Outgoing.system("hi"), exclude=[second.id])

        assert delivered == 1
        assert [json.loads(f) for f in first.channel.drain()] == [{"type": "system", "text": "hi"}]
        assert second.channel.drain() == []
        assert other.channel.drain() == []

    def test_broadcast_skips_closed_channels(self):
        open_session = self.admit("l1")
        closed_session = self.admit("l2")
        closed_session.channel.close()
        assert self.registry.broadcast("lobby", Outgoing.system("hi")) == 1
        assert len(open_session.channel.drain()) == 1
