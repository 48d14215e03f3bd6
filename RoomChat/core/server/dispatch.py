"""
Dispatch engine: applies inbound envelopes to shared chat state.

The engine owns the session registry and the room/private stores and
turns every client action into store mutations plus outbound envelopes
on the affected sessions' delivery channels. It never touches sockets;
everything it sends is enqueued.

Ordering: an appended room message is broadcast inside the room store's
locked section, so every member sees a room's messages in log order.
Reactions, edits and deletes are broadcast after their mutation and are
not ordered against concurrent appends.
"""

import asyncio
import logging
from typing import Optional, Set

from RoomChat.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    ProtocolError,
    RateLimitedError,
)
from RoomChat.core.message.protocol import ChatMessage, Incoming, IncomingType, Outgoing
from RoomChat.core.server.auth import JsonCredentialStore
from RoomChat.core.server.commands import CommandProcessor, create_default_processor
from RoomChat.core.server.interfaces import ContentFilter, CredentialStore, PreviewFetcher
from RoomChat.core.server.rooms import PrivateStore, RoomStore
from RoomChat.core.server.session import Session, SessionRegistry
from RoomChat.core.server.stats import ServerStats
from RoomChat.core.server.utils.helpers import ProfanityFilter, extract_first_url, extract_mentions

logger = logging.getLogger(__name__)

WELCOME = "Welcome: choose a username, or /register or /login. Use /join <room> to switch rooms."
CHOOSE_NAME = "Please choose a name or login/register before sending messages."


class DispatchEngine:
    """
    Interprets envelopes against the current session state.

    Example:
        engine = DispatchEngine(credentials=JsonCredentialStore("users.json"))
        await engine.handle_unauthenticated(session, '{"type": "cmd", "cmd": "/name alice"}')
        await engine.handle_frame(session, '{"type": "msg", "text": "hello"}')
    """

    def __init__(
        self,
        registry: Optional[SessionRegistry] = None,
        rooms: Optional[RoomStore] = None,
        private: Optional[PrivateStore] = None,
        credentials: Optional[CredentialStore] = None,
        content_filter: Optional[ContentFilter] = None,
        preview_fetcher: Optional[PreviewFetcher] = None,
        stats: Optional[ServerStats] = None,
        commands: Optional[CommandProcessor] = None
    ):
        """
        Args:
            registry: Live sessions (new empty registry if None)
            rooms: Room logs (new store with the default room if None)
            private: Private conversation logs
            credentials: Account store for /register and /login
            content_filter: Chat body filter (word-list filter if None)
            preview_fetcher: Link preview source; previews are off if None
            stats: Counters for /stats
            commands: Directive processor (all built-ins if None)
        """
        self.registry = registry or SessionRegistry()
        self.rooms = rooms or RoomStore()
        self.private = private or PrivateStore()
        self.credentials = credentials or JsonCredentialStore()
        self.content_filter = content_filter or ProfanityFilter()
        self.preview_fetcher = preview_fetcher
        self.stats = stats or ServerStats()
        self.commands = commands or create_default_processor()
        self._preview_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Outbound helpers

    def announce(self, room: str, text: str) -> ChatMessage:
        """Log a system message in ``room`` and broadcast it."""
        envelope = Outgoing.system(text)
        return self.rooms.append(
            room,
            ChatMessage.system(text),
            deliver=lambda _m: self.registry.broadcast(room, envelope)
        )

    def send_user_list(self, room: str) -> None:
        self.registry.broadcast(room, Outgoing.user_list(self.registry.names_in_room(room)))

    def send_typing(self, room: str) -> None:
        self.registry.broadcast(room, Outgoing.typing(self.registry.typing_in_room(room)))

    def send_history(self, session: Session) -> None:
        session.send(Outgoing.history(self.rooms.history(session.room)))

    def stats_report(self) -> str:
        return self.stats.report(
            clients=len(self.registry),
            rooms=len(self.rooms.rooms()),
            stored_messages=self.rooms.total_messages(),
        )

    # ------------------------------------------------------------------
    # Lifecycle

    def admit(self, session: Session, desired_name: str, authenticated: bool) -> str:
        """
        Register a connection that just picked a name.

        The session enters the default room; its name is made unique in the
        same registry section that inserts it.
        """
        session.authenticated = authenticated
        session.room = self.rooms.default_room
        self.rooms.ensure(session.room)
        name = self.registry.admit(session, desired_name)
        self.stats.record_connection()
        logger.info("Session %s joined as %s (authenticated=%s)", session.id, name, authenticated)
        return name

    def welcome(self, session: Session) -> None:
        """Announce a freshly admitted session and send it the room state."""
        self.announce(session.room, f"-- {session.name} joined the room --")
        self.send_history(session)
        self.send_user_list(session.room)

    def depart(self, session: Session) -> bool:
        """
        Remove a closing session and tell its last room.

        Returns:
            False if the session had already been removed (e.g. kicked)
        """
        removed = self.registry.remove(session.id)
        if removed is None:
            return False
        room = removed.room
        self.announce(room, f"-- {removed.name} left the room --")
        self.send_user_list(room)
        if removed.typing:
            self.send_typing(room)
        logger.info("Session %s (%s) left from room %s", removed.id, removed.name, room)
        return True

    def rename(self, session: Session, desired_name: str) -> str:
        old, new = self.registry.rename(session.id, desired_name)
        self.announce(session.room, f"-- {old} is now known as {new} --")
        self.send_user_list(session.room)
        logger.info("Session %s renamed %s -> %s", session.id, old, new)
        return new

    def login(self, session: Session, username: str) -> str:
        """Switch an active session to an authenticated account name."""
        _old, new = self.registry.rename(session.id, username)
        session.authenticated = True
        self.announce(session.room, f"-- {new} logged in --")
        self.send_user_list(session.room)
        logger.info("Session %s logged in as %s", session.id, new)
        return new

    def kick(self, kicker: Session, target_name: str) -> None:
        """
        Forcibly disconnect another session.

        Raises:
            AuthorizationError: Kicker is a guest, or targets itself
            NotFoundError: No live session has that name
        """
        if not kicker.authenticated:
            raise AuthorizationError("You must be logged in to kick users.", kicker.name)
        target = self.registry.find_by_name(target_name)
        if target is None:
            raise NotFoundError(f"User '{target_name}' not found", kicker.name)
        if target.id == kicker.id:
            raise AuthorizationError("You cannot kick yourself!", kicker.name)

        self.announce(kicker.room, f"-- {target.name} has been kicked by an admin --")
        if self.registry.remove(target.id) is None:
            return
        target.notify("You have been kicked by an admin.")
        target.channel.close(4000, "Kicked by an admin")
        self.send_user_list(target.room)
        if target.typing:
            self.send_typing(target.room)
        logger.info("Session %s (%s) was kicked by %s", target.id, target.name, kicker.name)

    def join_room(self, session: Session, room: str) -> None:
        """Move a session to another room, announcing it in both."""
        room = (room or "").strip()
        if not room:
            session.notify("Usage: /join <room>")
            return
        if session.room == room:
            session.notify(f"You are already in room '{room}'")
            return

        was_typing = session.typing
        previous = self.registry.move(session.id, room)
        if previous is None:
            return
        self.rooms.ensure(room)

        self.announce(previous, f"-- {session.name} left the room --")
        self.send_user_list(previous)
        if was_typing:
            self.send_typing(previous)

        self.announce(room, f"-- {session.name} joined the room --")
        self.send_history(session)
        self.send_user_list(room)
        session.notify(f"You joined room '{room}'")
        logger.debug("Session %s moved %s -> %s", session.id, previous, room)

    # ------------------------------------------------------------------
    # Inbound

    async def handle_unauthenticated(self, session: Session, raw: str) -> bool:
        """
        Handle a frame from a connection that has not picked a name.

        Returns:
            True once the session has been admitted
        """
        try:
            incoming = Incoming.deserialize(raw)
        except ProtocolError:
            session.notify(CHOOSE_NAME)
            return False

        if incoming.type == IncomingType.CMD:
            await self.commands.process(self, session, incoming.cmd, active=False)
        elif incoming.type == IncomingType.MSG:
            session.notify(CHOOSE_NAME)
        return session.id in self.registry

    async def handle_frame(self, session: Session, raw: str) -> None:
        """Handle a frame from an admitted session."""
        session.touch()
        try:
            incoming = Incoming.deserialize(raw)
        except ProtocolError as e:
            logger.debug("Treating malformed frame from %s as chat: %s", session.name, e)
            self.handle_chat(session, raw)
            return
        await self.dispatch(session, incoming)

    async def dispatch(self, session: Session, incoming: Incoming) -> None:
        kind = incoming.type
        if kind == IncomingType.CMD:
            await self.commands.process(self, session, incoming.cmd)
        elif kind == IncomingType.MSG:
            self.handle_chat(session, incoming.text)
        elif kind == IncomingType.TYPING:
            self.set_typing(session, incoming.is_typing)
        elif kind == IncomingType.REACT:
            self.toggle_reaction(session, incoming.msg_id, incoming.emoji)
        elif kind == IncomingType.EDIT:
            self.edit_message(session, incoming.msg_id, incoming.new_text)
        elif kind == IncomingType.DELETE:
            self.delete_message(session, incoming.msg_id)
        elif kind == IncomingType.MARKREAD:
            self.mark_read(session, incoming.last_msg_id)

    def handle_chat(self, session: Session, text: str) -> Optional[ChatMessage]:
        """
        Post a chat message to the session's room.

        Returns:
            The stored message, or None if it was rate limited
        """
        if not session.rate_limit.allow():
            error = RateLimitedError(session.rate_limit.limit, session.rate_limit.window, session.name)
            logger.warning("%s", error)
            session.notify(error.message)
            return None

        room = session.room
        message = ChatMessage.create(session.name, self.content_filter.filter(text))
        self.rooms.append(
            room,
            message,
            deliver=lambda m: self.registry.broadcast(room, Outgoing.chat(m))
        )
        self.stats.record_message()

        if session.typing:
            session.typing = False
            self.send_typing(room)

        for mentioned in extract_mentions(message.text):
            target = self.registry.find_by_name(mentioned, room=room)
            if target is not None and target.id != session.id:
                target.send(Outgoing.mention(session.name, message.text, target.name))

        url = extract_first_url(text)
        if url and self.preview_fetcher is not None:
            self._schedule_preview(room, message.id, url)
        return message

    def send_private(self, sender: Session, target_name: str, text: str) -> ChatMessage:
        """
        Deliver a private message to a member of the sender's room.

        Raises:
            NotFoundError: No session with that name in the sender's room
        """
        target = self.registry.find_by_name(target_name, room=sender.room)
        if target is None:
            raise NotFoundError(f"User '{target_name}' not found in your room", sender.name)
        message = ChatMessage.create(sender.name, self.content_filter.filter(text))
        self.private.append_between(
            sender.name,
            target.name,
            message,
            deliver=lambda m: target.send(Outgoing.chat(m, private=True))
        )
        return message

    def set_typing(self, session: Session, is_typing: bool) -> None:
        session.typing = is_typing
        self.send_typing(session.room)

    def toggle_reaction(self, session: Session, msg_id: str, emoji: str) -> Optional[bool]:
        added = self.rooms.toggle_reaction(session.room, msg_id, emoji, session.name)
        if added is None:
            logger.debug("Reaction from %s on unknown message %s ignored", session.name, msg_id)
            return None
        self.registry.broadcast(session.room, Outgoing.reaction(msg_id, emoji, session.name, added))
        return added

    def edit_message(self, session: Session, msg_id: str, new_text: str) -> bool:
        try:
            message = self.rooms.edit(session.room, msg_id, session.name, self.content_filter.filter(new_text))
        except (NotFoundError, AuthorizationError) as e:
            logger.debug("Edit of %s refused: %s", msg_id, e)
            session.notify(e.message)
            return False
        self.registry.broadcast(session.room, Outgoing.edit(msg_id, message.text))
        return True

    def delete_message(self, session: Session, msg_id: str) -> bool:
        try:
            self.rooms.delete(session.room, msg_id, session.name)
        except (NotFoundError, AuthorizationError) as e:
            logger.debug("Delete of %s refused: %s", msg_id, e)
            session.notify(e.message)
            return False
        self.registry.broadcast(session.room, Outgoing.delete(msg_id))
        return True

    def mark_read(self, session: Session, last_msg_id: str) -> None:
        session.last_read_msg_id = last_msg_id
        self.registry.broadcast(session.room, Outgoing.read_receipt(session.name, last_msg_id))

    def nudge(self, session: Session) -> None:
        self.registry.broadcast(session.room, Outgoing.nudge(session.name))
        self.announce(session.room, f"{session.name} sent a nudge!")

    # ------------------------------------------------------------------
    # Link previews

    def _schedule_preview(self, room: str, msg_id: str, url: str) -> None:
        task = asyncio.create_task(self._deliver_preview(room, msg_id, url))
        self._preview_tasks.add(task)
        task.add_done_callback(self._preview_tasks.discard)

    async def _deliver_preview(self, room: str, msg_id: str, url: str) -> None:
        try:
            preview = await self.preview_fetcher.fetch(url)
        except Exception as e:
            logger.warning("Preview fetcher failed for %s: %s", url, e)
            return
        if preview is None:
            return
        self.registry.broadcast(room, Outgoing.link_preview(
            msg_id, preview.url, preview.title, preview.description, preview.image
        ))

    async def wait_previews(self) -> None:
        """Wait for in-flight preview fetches."""
        if self._preview_tasks:
            await asyncio.gather(*self._preview_tasks, return_exceptions=True)

    async def close(self) -> None:
        """Cancel pending previews and release the preview fetcher."""
        for task in list(self._preview_tasks):
            task.cancel()
        await self.wait_previews()
        if self.preview_fetcher is not None:
            await self.preview_fetcher.close()


__all__ = ['DispatchEngine', 'WELCOME', 'CHOOSE_NAME']
