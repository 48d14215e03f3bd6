"""
Server startup module for RoomChat.
Provides the entry point for running the chat server until interrupted.
"""

import asyncio
import logging
import signal

from RoomChat.config import config
from RoomChat.core.logging import auto_configure
from RoomChat.core.server import ChatServer

logger = logging.getLogger(__name__)


async def serve(
    host: str = None,
    port: int = None,
    snapshot_path: str = None,
    users_path: str = None
) -> None:
    """Run the server until SIGINT/SIGTERM."""
    server = ChatServer.create(snapshot_path=snapshot_path, users_path=users_path)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # not available on Windows
            pass

    async with server.run(host, port):
        await stop.wait()
        logger.info("Shutdown requested")


def server(
    host: str = None,
    port: int = None,
    snapshot_path: str = None,
    users_path: str = None,
    log_env: str = None
) -> None:
    """
    Start the chat server.

    Args:
        host: Interface to bind (default from config)
        port: Port to listen on (default from config)
        snapshot_path: History snapshot file
        users_path: Accounts file
        log_env: Logging profile (development, production, testing)
    """
    auto_configure(log_env)
    logger.info("Starting RoomChat on %s:%s",
                host or config.DEFAULT_HOST, port if port is not None else config.DEFAULT_SERVER_PORT)
    try:
        asyncio.run(serve(host, port, snapshot_path, users_path))
    except KeyboardInterrupt:
        print("Closed by user.")
