#!/usr/bin/env python3
"""
HTML parsing and CSS selection.

Pages are parsed with BeautifulSoup over html5lib, which follows the HTML5
tree construction rules browsers use (implied html, head, body and tbody
elements are always present, and malformed markup never aborts parsing)
and queried with soupsieve CSS selectors. This module also builds the item
descriptions: either a selected region of the item page wrapped in a
standalone document, or the raw page with a <base> tag injected.
"""

import re
from dataclasses import dataclass
from html import escape
from typing import List, Optional, Union

from bs4 import BeautifulSoup, Tag, UnicodeDammit
from soupsieve import SelectorSyntaxError

from config import get_logger
from errors import EnrichmentFailure, SelectorError

logger = get_logger("document")

HTML_PARSER = "html5lib"

_HEAD_CLOSE = re.compile(r"</head\s*>", re.IGNORECASE)

Markup = Union[bytes, str]


@dataclass
class HtmlDocument:
    """A parsed page together with the URL it was loaded from."""

    soup: BeautifulSoup
    base_url: str

    @property
    def title(self) -> Optional[str]:
        if self.soup.title is None:
            return None
        text = element_text(self.soup.title)
        return text or None


def parse_document(markup: Markup, base_url: str) -> HtmlDocument:
    """Parse HTML (bytes are charset-sniffed) into a navigable document."""
    return HtmlDocument(soup=BeautifulSoup(markup, HTML_PARSER), base_url=base_url)


async def read_document(stream, base_url: str) -> HtmlDocument:
    """Read a page stream to the end and parse it."""
    return parse_document(await stream.read(), base_url)


def select(document: Union[HtmlDocument, Tag], selector: str) -> List[Tag]:
    """Return the elements matching a CSS selector, in document order.

    An empty list means nothing matched.

    Raises:
        SelectorError: if the selector is not valid CSS.
    """
    root = document.soup if isinstance(document, HtmlDocument) else document
    try:
        return root.select(selector)
    except SelectorSyntaxError as e:
        raise SelectorError(f"Invalid selector {selector!r}: {e}", selector=selector) from e


def element_text(element: Tag) -> str:
    """Return the element's text content with whitespace runs collapsed."""
    return " ".join(element.get_text().split())


def element_href(element: Tag) -> str:
    """Return the element's href attribute, or an empty string."""
    href = element.get("href")
    if isinstance(href, list):
        href = " ".join(href)
    return href or ""


def inner_html(element: Optional[Tag]) -> str:
    if element is None:
        return ""
    return element.decode_contents()


def decode_markup(markup: Markup) -> str:
    """Decode page bytes using the declared or sniffed charset."""
    if isinstance(markup, str):
        return markup
    dammit = UnicodeDammit(markup, is_html=True)
    if dammit.unicode_markup is None:
        raise EnrichmentFailure("Could not determine the page encoding")
    return dammit.unicode_markup


def render_item_content(markup: Markup, item_url: str, content_selector: str) -> str:
    """Build a standalone HTML description from an item page.

    The item page's head content is kept and a <base> pointing at the item URL
    is prepended so relative resources resolve when the description is
    rendered on its own. The body holds the inner markup of the first element
    matching ``content_selector`` (empty when nothing matches).
    """
    document = parse_document(markup, item_url)
    matches = select(document, content_selector)
    content = inner_html(matches[0]) if matches else ""
    if not matches:
        logger.debug(f"Content selector {content_selector!r} matched nothing on {item_url}")
    return (
        f'<html><head><base href="{escape(item_url, quote=True)}">'
        f"{inner_html(document.soup.head)}</head>"
        f"<body>{content}</body></html>"
    )


def inject_base_href(markup: Markup, base_href: str) -> str:
    """Insert ``<base href=...>`` before the first closing head tag.

    The rest of the page is returned verbatim.

    Raises:
        EnrichmentFailure: if the page has no closing head tag.
    """
    text = decode_markup(markup)
    match = _HEAD_CLOSE.search(text)
    if match is None:
        raise EnrichmentFailure("Page has no </head> to attach a <base> to")
    base_tag = f'<base href="{escape(base_href, quote=True)}">'
    return text[:match.start()] + base_tag + text[match.start():]
