"""
Server-wide counters reported by /stats.
"""

import logging
import time
from typing import Optional

import psutil

from RoomChat.core.server.utils.helpers import format_bytes, format_duration

logger = logging.getLogger(__name__)


class ServerStats:
    """Counts processed chat messages and served connections since start."""

    def __init__(self):
        self.started_at = time.monotonic()
        self.messages_processed = 0
        self.connections_served = 0

    def record_message(self) -> None:
        self.messages_processed += 1

    def record_connection(self) -> None:
        self.connections_served += 1

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    @staticmethod
    def memory_rss() -> Optional[int]:
        """Resident set size of this process in bytes, if available."""
        try:
            return psutil.Process().memory_info().rss
        except psutil.Error as e:
            logger.debug("Could not read process memory: %s", e)
            return None

    def report(self, clients: int, rooms: int, stored_messages: int) -> str:
        rss = self.memory_rss()
        return "\n".join([
            "Server Stats:",
            f"Clients: {clients}",
            f"Rooms: {rooms}",
            f"Messages: {stored_messages}",
            f"Processed: {self.messages_processed}",
            f"Connections: {self.connections_served}",
            f"Uptime: {format_duration(self.uptime)}",
            f"Mem: {format_bytes(rss) if rss is not None else 'N/A'}",
        ])
