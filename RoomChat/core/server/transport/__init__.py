"""
Transport layer for WebSocket connections.

Each connection gets a ``DeliveryChannel``: an unbounded queue of text
frames plus one forwarding task that drains it into the socket. Producers
never await; closing the channel is the only way to stop the forwarder.
"""

import asyncio
import logging
from typing import List, Optional, Union

from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed

from RoomChat.core.message.protocol import Outgoing

logger = logging.getLogger(__name__)

_CLOSE = object()


class DeliveryChannel:
    """
    Outbound queue for a single connection.

    ``send`` is synchronous and safe to call while holding a store lock;
    the forwarding task performs the actual socket writes in enqueue order.
    """

    def __init__(self, conn_id: str):
        """
        Args:
            conn_id: Connection id, used in log messages
        """
        self.conn_id = conn_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._close_code: Optional[int] = None
        self._close_reason = ""
        self._task: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of frames waiting to be written."""
        return self._queue.qsize()

    def send(self, message: Union[Outgoing, str]) -> bool:
        """
        Enqueue a frame.

        Args:
            message: Envelope or pre-serialized text

        Returns:
            False if the channel is already closed
        """
        if self._closed:
            return False
        if isinstance(message, Outgoing):
            message = message.serialize()
        self._queue.put_nowait(message)
        return True

    def close(self, code: Optional[int] = None, reason: str = "") -> None:
        """
        Close the channel.

        Frames already queued are still delivered. When ``code`` is given
        the forwarder closes the socket with it afterwards.
        """
        if self._closed:
            return
        self._closed = True
        self._close_code = code
        self._close_reason = reason
        self._queue.put_nowait(_CLOSE)

    def start_forwarding(self, websocket: ServerConnection) -> asyncio.Task:
        """Start the task that writes queued frames to ``websocket``."""
        if self._task is None:
            self._task = asyncio.create_task(self._forward(websocket))
        return self._task

    async def wait_closed(self) -> None:
        """Wait until the forwarding task has finished."""
        if self._task is not None:
            await self._task

    async def _forward(self, websocket: ServerConnection) -> None:
        try:
            while True:
                item = await self._queue.get()
                if item is _CLOSE:
                    break
                await websocket.send(item)
        except ConnectionClosed:
            logger.debug("Socket closed while forwarding to %s", self.conn_id)
        except Exception as e:
            logger.warning("Send failure on %s: %s", self.conn_id, e)
            self._closed = True
            try:
                await websocket.close(code=1011, reason="Send failure")
            except Exception as close_error:
                logger.debug("Close after send failure on %s failed: %s", self.conn_id, close_error)
            return
        finally:
            self._closed = True

        if self._close_code is not None:
            await websocket.close(code=self._close_code, reason=self._close_reason)

    def drain(self) -> List[str]:
        """Remove and return all queued frames without a socket."""
        frames = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not _CLOSE:
                frames.append(item)
        return frames


__all__ = ['DeliveryChannel']
