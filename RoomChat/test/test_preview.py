"""
Tests for link preview extraction and fetching.
"""

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from RoomChat.core.server.preview import LinkPreviewFetcher, parse_preview


class TestParsePreview:

    def test_open_graph_tags(self):
        document = """
        <html><head>
          <meta property="og:title" content="Rust &amp; Python">
          <meta content="A comparison" property="og:description" />
          <meta property="og:image" content="https://example.com/i.png">
          <title>Ignored</title>
        </head></html>
        """
        preview = parse_preview("https://example.com", document)
        assert preview.title == "Rust & Python"
        assert preview.description == "A comparison"
        assert preview.image == "https://example.com/i.png"
        assert preview.url == "https://example.com"

    def test_title_fallback(self):
        preview = parse_preview("https://example.com", "<head><title>\n Plain Page </title></head>")
        assert preview.title == "Plain Page"
        assert preview.description == ""
        assert preview.image == ""

    def test_nothing_to_show(self):
        assert parse_preview("https://example.com", "<html><body>hi</body></html>") is None

    def test_apostrophes_in_double_quoted_content(self):
        document = (
            '<meta property="og:title" content="Bob\'s Blog">'
            '<meta property="og:description" content="It\'s great">'
        )
        preview = parse_preview("http://x", document)
        assert preview.title == "Bob's Blog"
        assert preview.description == "It's great"

    def test_double_quotes_in_single_quoted_content(self):
        preview = parse_preview("http://x", "<meta name='og:title' content='The \"Best\" page'>")
        assert preview.title == 'The "Best" page'

    def test_first_meta_wins_and_case_is_ignored(self):
        document = (
            '<META Property="OG:Title" Content="First">'
            '<meta property="og:title" content="Second">'
        )
        assert parse_preview("http://x", document).title == "First"


def fake_response(status=200, content_type="text/html", body=b"", charset="utf-8"):
    response = MagicMock()
    response.status = status
    response.content_type = content_type
    response.charset = charset

    async def chunks(_size):
        for i in range(0, len(body), 4):
            yield body[i:i + 4]

    response.content.iter_chunked = chunks
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


def fetcher_with(context, **kwargs) -> LinkPreviewFetcher:
    fetcher = LinkPreviewFetcher(**kwargs)
    session = MagicMock()
    session.closed = False
    session.get = MagicMock(return_value=context)
    session.close = AsyncMock()
    fetcher._session = session
    return fetcher


class TestLinkPreviewFetcher:

    @pytest.mark.asyncio
    async def test_fetch_html(self):
        body = b'<meta property="og:title" content="Hello"><title>x</title>'
        fetcher = fetcher_with(fake_response(body=body))
        preview = await fetcher.fetch("https://example.com")
        assert preview.title == "Hello"

    @pytest.mark.asyncio
    async def test_non_html_ignored(self):
        fetcher = fetcher_with(fake_response(content_type="image/png", body=b"\x89PNG"))
        assert await fetcher.fetch("https://example.com/a.png") is None

    @pytest.mark.asyncio
    async def test_error_status_ignored(self):
        fetcher = fetcher_with(fake_response(status=404, body=b"<title>Not found</title>"))
        assert await fetcher.fetch("https://example.com/missing") is None

    @pytest.mark.asyncio
    async def test_body_truncated_to_limit(self):
        body = b"<title>" + b"a" * 64 + b"</title>"
        fetcher = fetcher_with(fake_response(body=body), max_bytes=16)
        assert await fetcher.fetch("https://example.com") is None

    @pytest.mark.asyncio
    async def test_network_error_ignored(self):
        context = MagicMock()
        context.__aenter__ = AsyncMock(side_effect=aiohttp.ClientConnectionError("refused"))
        context.__aexit__ = AsyncMock(return_value=False)
        fetcher = fetcher_with(context)
        assert await fetcher.fetch("https://example.invalid") is None

    @pytest.mark.asyncio
    async def test_close(self):
        fetcher = fetcher_with(fake_response())
        session = fetcher._session
        await fetcher.close()
        session.close.assert_awaited_once()
