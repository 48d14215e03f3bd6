"""
History snapshot persistence.

The room and private stores are written to one JSON file periodically and
on shutdown, and read back once at startup. Writes go to a temporary file
that then replaces the snapshot, so a crash mid-write leaves the previous
snapshot intact. Failures are logged; in-memory state is never touched by
a failed save.
"""

import asyncio
import json
import logging
import os
import time
from typing import Optional

import aiofiles
import aiofiles.os

from RoomChat.config import config
from RoomChat.core.exceptions import PersistenceError
from RoomChat.core.logging.utils import LogTimer
from RoomChat.core.message.protocol import ChatMessage
from RoomChat.core.server.interfaces import ServerLifecycle, SnapshotData, SnapshotStore
from RoomChat.core.server.rooms import PrivateStore, RoomStore

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class JsonSnapshotStore:
    """``SnapshotStore`` writing a single JSON document with aiofiles."""

    def __init__(self, path: str = None):
        self.path = path or config.SNAPSHOT_FILE
        self._write_lock = asyncio.Lock()

    async def load(self) -> Optional[SnapshotData]:
        """
        Read the snapshot.

        Returns:
            SnapshotData, or None if no snapshot exists yet

        Raises:
            PersistenceError: File unreadable or malformed
        """
        if not await aiofiles.os.path.exists(self.path):
            return None
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                content = await f.read()
            document = json.loads(content)
            return SnapshotData(
                rooms={
                    room: [ChatMessage.from_dict(item) for item in items]
                    for room, items in document.get("rooms", {}).items()
                },
                private={
                    key: [ChatMessage.from_dict(item) for item in items]
                    for key, items in document.get("private", {}).items()
                },
            )
        except OSError as e:
            raise PersistenceError(f"Cannot read snapshot: {e}", self.path) from e
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise PersistenceError(f"Malformed snapshot: {e}", self.path) from e

    async def save(self, data: SnapshotData) -> None:
        """
        Atomically replace the snapshot.

        Raises:
            PersistenceError: The file could not be written
        """
        document = {
            "version": SNAPSHOT_VERSION,
            "saved_at": int(time.time()),
            "rooms": {room: [m.to_dict() for m in items] for room, items in data.rooms.items()},
            "private": {key: [m.to_dict() for m in items] for key, items in data.private.items()},
        }
        payload = json.dumps(document, ensure_ascii=False)
        tmp_path = f"{self.path}.tmp"
        async with self._write_lock:
            try:
                directory = os.path.dirname(self.path)
                if directory:
                    await aiofiles.os.makedirs(directory, exist_ok=True)
                async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                    await f.write(payload)
                await aiofiles.os.replace(tmp_path, self.path)
            except OSError as e:
                raise PersistenceError(f"Cannot write snapshot: {e}", self.path) from e


class SnapshotTask(ServerLifecycle):
    """
    Periodically snapshots the room and private stores.

    ``restore`` is called once before serving; ``start``/``stop`` bracket
    the server's lifetime, and ``stop`` writes a final snapshot.
    """

    def __init__(
        self,
        rooms: RoomStore,
        private: PrivateStore,
        store: SnapshotStore,
        interval: float = None
    ):
        self._rooms = rooms
        self._private = private
        self._store = store
        self._interval = interval or config.SNAPSHOT_INTERVAL
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def restore(self) -> int:
        """
        Load the snapshot into the stores.

        Returns:
            Number of messages restored (0 when nothing could be loaded)
        """
        try:
            data = await self._store.load()
        except PersistenceError as e:
            logger.error("Snapshot not loaded: %s", e)
            return 0
        if data is None:
            logger.info("No history snapshot found, starting empty")
            return 0
        restored = self._rooms.restore(data.rooms) + self._private.restore(data.private)
        self._rooms.ensure(self._rooms.default_room)
        logger.info("Restored %d messages in %d rooms and %d private conversations",
                    restored, len(data.rooms), len(data.private))
        return restored

    async def save_now(self) -> bool:
        """Write a snapshot immediately; returns False on failure."""
        data = SnapshotData(rooms=self._rooms.export(), private=self._private.export())
        try:
            with LogTimer("snapshot_save", logger, slow_after=1.0):
                await self._store.save(data)
        except PersistenceError as e:
            logger.error("Snapshot failed: %s", e)
            return False
        return True

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._snapshot_loop())
        logger.info("Snapshot task started (every %.0f seconds)", self._interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.save_now()
        logger.info("Snapshot task stopped")

    async def _snapshot_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._interval)
                await self.save_now()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("Error in snapshot loop: %s", e)


__all__ = ['JsonSnapshotStore', 'SnapshotTask', 'SNAPSHOT_VERSION']
