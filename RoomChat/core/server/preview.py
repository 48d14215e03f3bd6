"""
Link preview fetcher.

Reads the head of an HTML page over aiohttp and extracts Open Graph
metadata (``og:title``, ``og:description``, ``og:image``), falling back to
``<title>``. The client session is created lazily and shared by every
fetch.
"""

import asyncio
import logging
from html.parser import HTMLParser
from typing import Dict, Optional

import aiohttp

from RoomChat.config import config
from RoomChat.core.server.interfaces import LinkPreview

logger = logging.getLogger(__name__)


class _HeadParser(HTMLParser):
    """Collects ``<meta property|name=... content=...>`` values and the ``<title>`` text."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.meta: Dict[str, str] = {}
        self.title: Optional[str] = None
        self._title_parts: Optional[list] = None

    def handle_starttag(self, tag, attrs):
        if tag == "meta":
            values = {name.lower(): value for name, value in attrs if value is not None}
            key = values.get("property") or values.get("name")
            if key and "content" in values:
                self.meta.setdefault(key.lower(), values["content"].strip())
        elif tag == "title" and self.title is None:
            self._title_parts = []

    def handle_data(self, data):
        if self._title_parts is not None:
            self._title_parts.append(data)

    def handle_endtag(self, tag):
        if tag == "title" and self._title_parts is not None:
            self.title = "".join(self._title_parts).strip()
            self._title_parts = None


def parse_preview(url: str, document: str) -> Optional[LinkPreview]:
    """
    Build a preview from page markup.

    Returns:
        LinkPreview, or None when neither a title nor a description is found
    """
    parser = _HeadParser()
    parser.feed(document)
    parser.close()

    title = parser.meta.get("og:title") or parser.title or ""
    description = parser.meta.get("og:description", "")
    image = parser.meta.get("og:image", "")

    if not title and not description:
        return None
    return LinkPreview(url=url, title=title, description=description, image=image)


class LinkPreviewFetcher:
    """
    ``PreviewFetcher`` implementation over aiohttp.

    Guards: total timeout, byte cap on the body, and ``text/html`` only.
    Every failure yields None.
    """

    def __init__(
        self,
        timeout: float = None,
        max_bytes: int = None,
        user_agent: str = None
    ):
        self.timeout = timeout or config.PREVIEW_TIMEOUT
        self.max_bytes = max_bytes or config.PREVIEW_MAX_BYTES
        self.user_agent = user_agent or config.PREVIEW_USER_AGENT
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            async with self._lock:
                if self._session is None or self._session.closed:
                    self._session = aiohttp.ClientSession(
                        timeout=aiohttp.ClientTimeout(total=self.timeout, connect=self.timeout / 2),
                        headers={"User-Agent": self.user_agent},
                    )
        return self._session

    async def fetch(self, url: str) -> Optional[LinkPreview]:
        try:
            session = await self._get_session()
            async with session.get(url, allow_redirects=True) as resp:
                if resp.status != 200:
                    logger.debug("Preview of %s skipped: HTTP %d", url, resp.status)
                    return None
                if resp.content_type != "text/html":
                    logger.debug("Preview of %s skipped: %s", url, resp.content_type)
                    return None
                body = bytearray()
                async for chunk in resp.content.iter_chunked(8192):
                    body.extend(chunk)
                    if len(body) >= self.max_bytes:
                        del body[self.max_bytes:]
                        break
                document = body.decode(resp.charset or "utf-8", errors="replace")
        except (aiohttp.ClientError, asyncio.TimeoutError, LookupError, ValueError) as e:
            logger.debug("Preview fetch for %s failed: %s", url, e)
            return None

        return parse_preview(url, document)

    async def close(self) -> None:
        """Close the shared session."""
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
            self._session = None


__all__ = ['LinkPreviewFetcher', 'parse_preview']
