"""
Account storage for /register and /login.

Accounts live in a JSON file mapping usernames to bcrypt hashes. The file
is read once on first use and rewritten after every registration; hashing
runs in a worker thread so the event loop keeps serving other clients.
"""

import asyncio
import json
import logging
from typing import Dict, Optional

import aiofiles
import aiofiles.os
import bcrypt

from RoomChat.config import config
from RoomChat.core.exceptions import PersistenceError
from RoomChat.core.server.interfaces import AuthResult

logger = logging.getLogger(__name__)


def hash_password(password: str, rounds: int = None) -> str:
    """Hash password with bcrypt."""
    salt = bcrypt.gensalt(rounds=rounds or config.BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, hashed_password: str) -> bool:
    """Verify password against hash."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), hashed_password.encode('utf-8'))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


class JsonCredentialStore:
    """
    ``CredentialStore`` backed by a JSON users file.

    Example:
        store = JsonCredentialStore("users.json")
        result = await store.register("alice", "secret")
        ok = await store.verify("alice", "secret")
    """

    def __init__(self, path: str = None, rounds: int = None):
        """
        Args:
            path: Users file (defaults to ``config.USER_DB_FILE``)
            rounds: bcrypt cost factor (defaults to ``config.BCRYPT_ROUNDS``)
        """
        self.path = path or config.USER_DB_FILE
        self.rounds = rounds or config.BCRYPT_ROUNDS
        self._users: Optional[Dict[str, str]] = None
        self._lock = asyncio.Lock()

    async def _load(self) -> Dict[str, str]:
        if self._users is not None:
            return self._users
        users: Dict[str, str] = {}
        if await aiofiles.os.path.exists(self.path):
            try:
                async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                    content = await f.read()
                users = {str(k): str(v) for k, v in json.loads(content or "{}").items()}
            except (OSError, ValueError, AttributeError) as e:
                logger.error("Could not read users file %s: %s", self.path, e)
        self._users = users
        logger.info("Loaded %d user accounts from %s", len(users), self.path)
        return users

    async def _save(self, users: Dict[str, str]) -> None:
        tmp_path = f"{self.path}.tmp"
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(users, indent=2, ensure_ascii=False))
            await aiofiles.os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"failed to save users: {e}", self.path) from e

    async def register(self, username: str, password: str) -> AuthResult:
        """
        Create an account.

        Returns:
            AuthResult; duplicates fail with ``error_code="DUPLICATE"``
        """
        async with self._lock:
            users = await self._load()
            if username in users:
                return AuthResult(
                    success=False,
                    username=username,
                    error_message="username already exists",
                    error_code="DUPLICATE"
                )
            hashed = await asyncio.to_thread(hash_password, password, self.rounds)
            users[username] = hashed
            try:
                await self._save(users)
            except PersistenceError as e:
                del users[username]
                logger.error("%s", e)
                return AuthResult(
                    success=False,
                    username=username,
                    error_message=e.message,
                    error_code="STORAGE"
                )
        logger.info("Registered user %s", username)
        return AuthResult(success=True, username=username)

    async def verify(self, username: str, password: str) -> bool:
        async with self._lock:
            users = await self._load()
            stored = users.get(username)
        if stored is None:
            return False
        return await asyncio.to_thread(verify_password, password, stored)


__all__ = ['JsonCredentialStore', 'hash_password', 'verify_password']
