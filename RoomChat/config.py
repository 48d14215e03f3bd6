"""
Configuration module for RoomChat application.
Stores all server settings; every value can be overridden from the environment.
"""

import os
from typing import Dict, Any


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        return default


class Config:
    """Application configuration class."""

    # Server Configuration
    DEFAULT_HOST = os.environ.get("ROOMCHAT_HOST", "0.0.0.0")
    DEFAULT_SERVER_PORT = _env_int("ROOMCHAT_PORT", 8080)

    # Rooms
    DEFAULT_ROOM = "lobby"
    HISTORY_CAPACITY = _env_int("ROOMCHAT_HISTORY_CAPACITY", 200)

    # Rate limiting: at most RATE_LIMIT_MESSAGES chat messages per RATE_LIMIT_WINDOW seconds
    RATE_LIMIT_MESSAGES = _env_int("ROOMCHAT_RATE_LIMIT_MESSAGES", 5)
    RATE_LIMIT_WINDOW = _env_float("ROOMCHAT_RATE_LIMIT_WINDOW", 10.0)

    # User Database (username -> bcrypt hash)
    USER_DB_FILE = os.environ.get("ROOMCHAT_USERS", "users.json")
    BCRYPT_ROUNDS = _env_int("ROOMCHAT_BCRYPT_ROUNDS", 10)

    # Room history snapshot
    SNAPSHOT_FILE = os.environ.get("ROOMCHAT_SNAPSHOT", "history_snapshot.json")
    SNAPSHOT_INTERVAL = _env_float("ROOMCHAT_SNAPSHOT_INTERVAL", 300.0)

    # Presence classification
    PRESENCE_INTERVAL = _env_float("ROOMCHAT_PRESENCE_INTERVAL", 30.0)
    IDLE_TIMEOUT = _env_float("ROOMCHAT_IDLE_TIMEOUT", 300.0)

    # Link previews
    PREVIEW_TIMEOUT = _env_float("ROOMCHAT_PREVIEW_TIMEOUT", 5.0)
    PREVIEW_MAX_BYTES = _env_int("ROOMCHAT_PREVIEW_MAX_BYTES", 512 * 1024)
    PREVIEW_USER_AGENT = "RoomChat/1.0 (link preview)"

    # Content filter word list (comma separated)
    PROFANITY_WORDS = os.environ.get("ROOMCHAT_PROFANITY", "badword1,badword2,badword3")

    @classmethod
    def get_config(cls) -> Dict[str, Any]:
        """Get all configuration values as a dictionary."""
        return {
            "DEFAULT_HOST": cls.DEFAULT_HOST,
            "DEFAULT_SERVER_PORT": cls.DEFAULT_SERVER_PORT,
            "DEFAULT_ROOM": cls.DEFAULT_ROOM,
            "HISTORY_CAPACITY": cls.HISTORY_CAPACITY,
            "RATE_LIMIT_MESSAGES": cls.RATE_LIMIT_MESSAGES,
            "RATE_LIMIT_WINDOW": cls.RATE_LIMIT_WINDOW,
            "USER_DB_FILE": cls.USER_DB_FILE,
            "BCRYPT_ROUNDS": cls.BCRYPT_ROUNDS,
            "SNAPSHOT_FILE": cls.SNAPSHOT_FILE,
            "SNAPSHOT_INTERVAL": cls.SNAPSHOT_INTERVAL,
            "PRESENCE_INTERVAL": cls.PRESENCE_INTERVAL,
            "IDLE_TIMEOUT": cls.IDLE_TIMEOUT,
            "PREVIEW_TIMEOUT": cls.PREVIEW_TIMEOUT,
            "PREVIEW_MAX_BYTES": cls.PREVIEW_MAX_BYTES,
            "PROFANITY_WORDS": cls.PROFANITY_WORDS,
        }


# Create config instance
config = Config()
