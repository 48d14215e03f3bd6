"""
Slash-command handling for the server.

Every directive is a ``CommandHandler`` subclass registered in a
``CommandRegistry``. The ``CommandProcessor`` splits a command line into a
lowercased command token and at most two arguments (the second keeps its
embedded spaces), checks arity and login phase, and runs the handler.

Only ``/name``, ``/register`` and ``/login`` are available before a
connection has picked a name.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

from RoomChat.core.exceptions import ChatError
from RoomChat.core.message.protocol import Outgoing
from RoomChat.core.server.session import Session
from RoomChat.core.server.utils.helpers import parse_command_line

if TYPE_CHECKING:
    from RoomChat.core.server.dispatch import DispatchEngine

logger = logging.getLogger(__name__)

UNKNOWN_COMMAND = "Unknown command. Type /help for available commands."
NAME_FIRST = "Please choose a name or login/register first. Unknown: {command}"


@dataclass
class CommandContext:
    """Context passed to command handlers."""
    session: Session
    engine: 'DispatchEngine'
    command: str
    args: List[Optional[str]] = field(default_factory=list)
    active: bool = True

    def arg(self, index: int) -> Optional[str]:
        return self.args[index] if index < len(self.args) else None

    def reply(self, text: str) -> bool:
        """Send a private system notice to the invoking session."""
        return self.session.notify(text)


class CommandHandler(ABC):
    """
    Abstract base class for command handlers.

    Attributes:
        name: Command token including the slash
        aliases: Extra tokens dispatched to this handler
        usage: Synopsis shown by /help and in usage errors
        description: One line for /help
        required_args: Number of non-blank arguments needed
        before_login: Usable while the connection has no name yet
    """

    name: str = ""
    aliases: List[str] = []
    usage: str = ""
    description: str = ""
    required_args: int = 0
    before_login: bool = False

    @abstractmethod
    async def execute(self, ctx: CommandContext) -> None:
        pass

    def usage_error(self) -> str:
        return f"Usage: {self.usage or self.name}"

    def get_help(self) -> str:
        return f"  {self.usage or self.name:<20} - {self.description}"


class CommandRegistry:
    """Registry for command handlers, looked up by name or alias."""

    def __init__(self):
        self._handlers: List[CommandHandler] = []
        self._handlers_by_name: Dict[str, CommandHandler] = {}

    def register(self, handler: CommandHandler) -> None:
        self._handlers.append(handler)
        self._handlers_by_name[handler.name] = handler
        for alias in handler.aliases:
            self._handlers_by_name[alias] = handler
        logger.debug("Registered command handler: %s", handler.name)

    def unregister(self, name: str) -> Optional[CommandHandler]:
        handler = self._handlers_by_name.pop(name, None)
        if handler:
            self._handlers.remove(handler)
            self._handlers_by_name.pop(handler.name, None)
            for alias in handler.aliases:
                self._handlers_by_name.pop(alias, None)
            logger.debug("Unregistered command handler: %s", handler.name)
        return handler

    def get_handler(self, name: str) -> Optional[CommandHandler]:
        return self._handlers_by_name.get(name)

    def get_all_handlers(self) -> List[CommandHandler]:
        """Handlers in registration order."""
        return self._handlers.copy()


class NameCommand(CommandHandler):
    name = "/name"
    usage = "/name <name>"
    description = "Set your display name"
    required_args = 1
    before_login = True

    async def execute(self, ctx: CommandContext) -> None:
        desired = ctx.arg(0).strip()
        if not ctx.active:
            assigned = ctx.engine.admit(ctx.session, desired, authenticated=False)
            ctx.reply(f"Your name is '{assigned}'. You are not authenticated.")
            ctx.engine.welcome(ctx.session)
            return
        new_name = ctx.engine.rename(ctx.session, desired)
        ctx.reply(f"Your name is now '{new_name}'")


class RegisterCommand(CommandHandler):
    name = "/register"
    usage = "/register <u> <p>"
    description = "Create an account"
    required_args = 2
    before_login = True

    async def execute(self, ctx: CommandContext) -> None:
        username, password = ctx.arg(0).strip(), ctx.arg(1).strip()
        result = await ctx.engine.credentials.register(username, password)
        if not result.success:
            ctx.reply(f"Register failed: {result.error_message}")
            return
        if ctx.active:
            ctx.reply(f"Registered '{username}'. Use /login to authenticate.")
            return
        assigned = ctx.engine.admit(ctx.session, username, authenticated=True)
        ctx.reply(f"Registered and logged in as '{assigned}'")
        ctx.engine.welcome(ctx.session)


class LoginCommand(CommandHandler):
    name = "/login"
    usage = "/login <u> <p>"
    description = "Log in to your account"
    required_args = 2
    before_login = True

    async def execute(self, ctx: CommandContext) -> None:
        username, password = ctx.arg(0).strip(), ctx.arg(1).strip()
        if not await ctx.engine.credentials.verify(username, password):
            if ctx.active:
                ctx.reply("Login failed: invalid credentials")
            else:
                ctx.reply("Login failed: invalid username or password")
            return
        if not ctx.active:
            assigned = ctx.engine.admit(ctx.session, username, authenticated=True)
            ctx.reply(f"Logged in as '{assigned}'")
            ctx.engine.welcome(ctx.session)
            return
        assigned = ctx.engine.login(ctx.session, username)
        ctx.reply(f"Logged in as '{assigned}'")


class MsgCommand(CommandHandler):
    name = "/msg"
    usage = "/msg <user> <text>"
    description = "Private message a user"
    required_args = 2

    async def execute(self, ctx: CommandContext) -> None:
        ctx.engine.send_private(ctx.session, ctx.arg(0).strip(), ctx.arg(1))


class JoinCommand(CommandHandler):
    name = "/join"
    usage = "/join <room>"
    description = "Join or create a room"
    required_args = 1

    async def execute(self, ctx: CommandContext) -> None:
        ctx.engine.join_room(ctx.session, ctx.arg(0))


class LeaveCommand(CommandHandler):
    name = "/leave"
    description = "Return to lobby"

    async def execute(self, ctx: CommandContext) -> None:
        ctx.engine.join_room(ctx.session, ctx.engine.rooms.default_room)


class RoomsCommand(CommandHandler):
    name = "/rooms"
    description = "List all rooms"

    async def execute(self, ctx: CommandContext) -> None:
        engine = ctx.engine
        ctx.session.send(Outgoing.room_list(engine.rooms.listing(engine.registry.member_counts())))


class RoomCommand(CommandHandler):
    name = "/room"
    description = "Show current room"

    async def execute(self, ctx: CommandContext) -> None:
        ctx.reply(f"Current room: {ctx.session.room}")


class ListCommand(CommandHandler):
    name = "/list"
    description = "List users in room"

    async def execute(self, ctx: CommandContext) -> None:
        ctx.engine.send_user_list(ctx.session.room)


class WhoCommand(CommandHandler):
    name = "/who"
    description = "Show users with status"

    async def execute(self, ctx: CommandContext) -> None:
        room = ctx.session.room
        users = ", ".join(
            f"{s.name} ({'✓' if s.authenticated else 'guest'})"
            for s in ctx.engine.registry.sessions_in_room(room)
        )
        ctx.reply(f"Users in '{room}': {users}")


class KickCommand(CommandHandler):
    name = "/kick"
    usage = "/kick <user>"
    description = "Kick a user (logged-in only)"
    required_args = 1

    async def execute(self, ctx: CommandContext) -> None:
        ctx.engine.kick(ctx.session, ctx.arg(0).strip())


class NudgeCommand(CommandHandler):
    name = "/nudge"
    description = "Send a nudge (shake screen)"

    async def execute(self, ctx: CommandContext) -> None:
        ctx.engine.nudge(ctx.session)


class HistoryCommand(CommandHandler):
    name = "/history"
    description = "Reload chat history"

    async def execute(self, ctx: CommandContext) -> None:
        ctx.engine.send_history(ctx.session)


class StatsCommand(CommandHandler):
    name = "/stats"
    description = "Show server metrics"

    async def execute(self, ctx: CommandContext) -> None:
        ctx.reply(ctx.engine.stats_report())


class HelpCommand(CommandHandler):
    """Lists every registered command."""

    name = "/help"
    description = "Show this help"

    def __init__(self, registry: CommandRegistry):
        self._registry = registry

    async def execute(self, ctx: CommandContext) -> None:
        lines = ["Available commands:"]
        lines.extend(h.get_help() for h in self._registry.get_all_handlers())
        ctx.reply("\n".join(lines))


class CommandProcessor:
    """Parses directive lines and runs the matching handler."""

    def __init__(self, registry: Optional[CommandRegistry] = None):
        self._registry = registry or CommandRegistry()

    @property
    def registry(self) -> CommandRegistry:
        return self._registry

    async def process(
        self,
        engine: 'DispatchEngine',
        session: Session,
        line: str,
        active: bool = True
    ) -> Optional[CommandHandler]:
        """
        Execute one directive line.

        Args:
            engine: Dispatch engine the handlers act on
            session: Invoking session
            line: Raw directive text, e.g. ``/msg bob hi there``
            active: False while the connection has no name yet

        Returns:
            The handler that ran, or None if the line was rejected
        """
        command, first, second = parse_command_line(line)
        handler = self._registry.get_handler(command)

        if not active and (handler is None or not handler.before_login):
            session.notify(NAME_FIRST.format(command=command))
            return None
        if handler is None:
            session.notify(UNKNOWN_COMMAND)
            return None

        args = [a for a in (first, second) if a is not None]
        if len(args) < handler.required_args or any(not a.strip() for a in args[:handler.required_args]):
            session.notify(handler.usage_error())
            return None

        ctx = CommandContext(session=session, engine=engine, command=command, args=args, active=active)
        try:
            await handler.execute(ctx)
        except ChatError as e:
            ctx.reply(e.message)
        return handler


def create_default_processor() -> CommandProcessor:
    """Create a processor with every built-in directive registered."""
    registry = CommandRegistry()
    for handler in (
        NameCommand(),
        RegisterCommand(),
        LoginCommand(),
        MsgCommand(),
        JoinCommand(),
        LeaveCommand(),
        RoomsCommand(),
        RoomCommand(),
        ListCommand(),
        WhoCommand(),
        KickCommand(),
        NudgeCommand(),
        HistoryCommand(),
        StatsCommand(),
    ):
        registry.register(handler)
    registry.register(HelpCommand(registry))
    return CommandProcessor(registry)


__all__ = [
    'CommandContext',
    'CommandHandler',
    'CommandRegistry',
    'CommandProcessor',
    'HelpCommand',
    'create_default_processor',
    'UNKNOWN_COMMAND',
    'NAME_FIRST',
]
