import asyncio
from typing import Dict, List, Optional

import pytest

from errors import FetchCancelled, FetchError


class FakeStream:
    """In-memory stand-in for fetcher.PageStream."""

    def __init__(self, url: str, body: bytes, headers: Optional[Dict[str, str]] = None):
        self.url = url
        self.body = body
        self.headers = headers or {}
        self.status = 200
        self.closed = False
        self.aborted = False

    async def read(self) -> bytes:
        return self.body


class FakeOpener:
    """Serves canned pages by URL.

    A page value is either the body (str or bytes), an exception to raise, or a
    ``(delay_seconds, body)`` tuple to simulate a slow server.
    """

    def __init__(self, pages: Dict[str, object], headers: Optional[Dict[str, str]] = None):
        self.pages = pages
        self.headers = headers or {}
        self.calls: List[str] = []
        self.conditional_gets = []
        self.streams: List[FakeStream] = []
        self.in_flight = 0
        self.max_in_flight = 0
        # Set to make open_stream cancel the given token once it returns
        self.cancel_after_open = None

    async def open_stream(self, url, cancel=None, conditional_get=None):
        if cancel is not None and cancel.cancelled:
            raise FetchCancelled(f"Fetch of {url} cancelled before it started")
        self.calls.append(url)
        self.conditional_gets.append(conditional_get)
        page = self.pages.get(url)
        if page is None:
            raise FetchError(f"HTTP 404 fetching {url}", url=url, status=404)

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if isinstance(page, tuple):
                delay, page = page
                await asyncio.sleep(delay)
            else:
                await asyncio.sleep(0)
        finally:
            self.in_flight -= 1

        if isinstance(page, BaseException):
            raise page
        body = page.encode("utf-8") if isinstance(page, str) else page
        stream = FakeStream(url, body, dict(self.headers))
        self.streams.append(stream)
        if self.cancel_after_open is not None:
            self.cancel_after_open.cancel()
        return stream

    def close_stream(self, stream, abort=False):
        stream.closed = True
        stream.aborted = abort


def listing_page(*anchors: str) -> str:
    """Build a listing page with one <li><a> per (href, title) pair given as 'href|title'."""
    rows = []
    for anchor in anchors:
        href, title = anchor.split("|", 1)
        rows.append(f'<li class="story"><a href="{href}">{title}</a></li>')
    return f"<html><head><title>Listing</title></head><body><ul>{''.join(rows)}</ul></body></html>"


def item_page(text: str) -> str:
    return (
        '<html><head><link rel="stylesheet" href="style.css"></head>'
        f'<body><nav>menu</nav><div class="post"><p>{text}</p></div></body></html>'
    )


@pytest.fixture
def make_opener():
    def _make(pages, headers=None):
        return FakeOpener(pages, headers)
    return _make
