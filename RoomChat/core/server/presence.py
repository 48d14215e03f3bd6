"""Presence classification for RoomChat.

Every live session is either ``active`` or ``idle``. A session turns idle
once no inbound frame arrived for ``idle_timeout`` seconds; the first
frame after that makes it active again (on the next check). Changes are
broadcast to the session's room as ``status`` envelopes.
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional, Tuple

from RoomChat.config import config
from RoomChat.core.message.protocol import Outgoing
from RoomChat.core.server.interfaces import ServerLifecycle
from RoomChat.core.server.session import STATUS_ACTIVE, STATUS_IDLE, SessionRegistry

logger = logging.getLogger(__name__)


class PresenceMonitor(ServerLifecycle):
    """Periodic active/idle classifier."""

    def __init__(
        self,
        registry: SessionRegistry,
        interval: float = None,
        idle_timeout: float = None,
        clock: Callable[[], float] = time.time
    ):
        self._registry = registry
        self._interval = interval or config.PRESENCE_INTERVAL
        self._idle_timeout = idle_timeout or config.IDLE_TIMEOUT
        self._clock = clock
        self._running = False
        self._task: Optional[asyncio.Task] = None

    def check(self) -> List[Tuple[str, str]]:
        """
        Reclassify every session and broadcast changes.

        Returns:
            (name, new status) for each session whose status changed
        """
        now = self._clock()
        changes = []
        for session in self._registry.all_sessions():
            status = STATUS_IDLE if now - session.last_active > self._idle_timeout else STATUS_ACTIVE
            if status == session.status:
                continue
            session.status = status
            changes.append((session.name, status))
            self._registry.broadcast(session.room, Outgoing.status(session.name, status))
        if changes:
            logger.debug("Presence changes: %s", changes)
        return changes

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._monitor_loop())
        logger.info("Presence monitor started")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Presence monitor stopped")

    async def _monitor_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._interval)
                self.check()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("Presence monitor error: %s", e)
