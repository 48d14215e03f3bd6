"""
Utility functions and helpers for the server module.
"""

import logging
import re
from typing import Iterable, List, Optional

from RoomChat.config import config

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"https?://\S+")
_MENTION_RE = re.compile(r"(?<![\w@])@(\S+)")
_MENTION_TRAILING = ".,!?:;)]}'\""


class ProfanityFilter:
    """
    Word-list content filter.

    Whole words from the list are replaced with ``****`` regardless of case.
    """

    REPLACEMENT = "****"

    def __init__(self, words: Optional[Iterable[str]] = None):
        """
        Args:
            words: Words to censor; defaults to ``config.PROFANITY_WORDS``
        """
        if words is None:
            words = config.PROFANITY_WORDS.split(",")
        self.words = [w.strip() for w in words if w.strip()]
        if self.words:
            alternatives = "|".join(re.escape(w) for w in self.words)
            self._pattern = re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)
        else:
            self._pattern = None

    def filter(self, text: str) -> str:
        if self._pattern is None:
            return text
        return self._pattern.sub(self.REPLACEMENT, text)


def extract_first_url(text: str) -> Optional[str]:
    """Return the first http(s) URL in ``text``, if any."""
    match = _URL_RE.search(text)
    return match.group(0) if match else None


def extract_mentions(text: str) -> List[str]:
    """
    Names referenced as ``@name``, in order of appearance, without duplicates.

    Trailing punctuation is not part of the name, so ``@bob,`` yields ``bob``.
    """
    seen = set()
    names = []
    for raw in _MENTION_RE.findall(text):
        name = raw.rstrip(_MENTION_TRAILING)
        if name and name.lower() not in seen:
            seen.add(name.lower())
            names.append(name)
    return names


def parse_command_line(line: str):
    """
    Split a directive into (command, arg1, arg2).

    The command token is lowercased; at most two arguments are split off
    and the second keeps its embedded spaces.
    """
    parts = line.strip().split(" ", 2)
    command = parts[0].lower()
    first = parts[1] if len(parts) > 1 else None
    second = parts[2] if len(parts) > 2 else None
    return command, first, second


def format_bytes(num: float) -> str:
    """Human readable size, e.g. ``12.34 MB``."""
    for unit in ("B", "KB", "MB", "GB"):
        if num < 1024 or unit == "GB":
            return f"{num:.2f} {unit}"
        num /= 1024
    return f"{num:.2f} GB"


def format_duration(seconds: float) -> str:
    """Format an uptime as ``1d 2h 3m 4s``, dropping leading zero units."""
    seconds = int(seconds)
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if days or hours:
        parts.append(f"{hours}h")
    if days or hours or minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")
    return " ".join(parts)


__all__ = [
    'ProfanityFilter',
    'extract_first_url',
    'extract_mentions',
    'parse_command_line',
    'format_bytes',
    'format_duration',
]
