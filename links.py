#!/usr/bin/env python3
"""
Link resolution against the listing page.

Item hrefs scraped from a listing page are frequently relative; these helpers
turn them into absolute URLs using the page's scheme, host, port and the
directory part of its path.
"""

import re
from urllib.parse import urlsplit

from errors import InvalidLinkError

# Whitespace and control characters are never valid inside a URI
_ILLEGAL_CHARS = re.compile(r"[\s\x00-\x1f\x7f]")
# RFC 3986 scheme: ALPHA *( ALPHA / DIGIT / "+" / "-" / "." ) ":"
_HAS_SCHEME = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*:")


def site_root(page_url: str) -> str:
    """Return ``scheme://host[:port]`` for a page URL.

    The port is only included when the URL spells one out.
    """
    parts = urlsplit(page_url)
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"  # IPv6 literal
    port = parts.port
    return f"{parts.scheme}://{host}" + (f":{port}" if port and port > 0 else "")


def current_directory(page_url: str) -> str:
    """Return the page path truncated after its last '/' ("/" for an empty path)."""
    path = urlsplit(page_url).path or "/"
    return path[:path.rfind("/") + 1]


def _check_absolute(url: str, href: str) -> str:
    if _ILLEGAL_CHARS.search(url):
        raise InvalidLinkError(f"Link contains whitespace or control characters: {href!r}", href=href)
    try:
        parts = urlsplit(url)
        # .port raises ValueError when out of range
        _ = parts.port
    except ValueError as e:
        raise InvalidLinkError(f"Unparseable link {href!r}: {e}", href=href) from e
    if not parts.scheme:
        raise InvalidLinkError(f"Link {href!r} did not resolve to an absolute URI", href=href)
    return url


def resolve_link(href: str, page_url: str) -> str:
    """Resolve an item href against the listing page URL.

    - hrefs that already carry a scheme are returned unchanged
    - ``//host/path`` takes the page's scheme
    - ``/path`` is appended to the site root
    - anything else is appended to the root plus the page's directory

    Raises:
        InvalidLinkError: if the href is empty or the result is not a valid URI.
    """
    if href is None or not href.strip():
        raise InvalidLinkError("Empty link", href=href)
    href = href.strip()

    if _HAS_SCHEME.match(href):
        return _check_absolute(href, href)

    if href.startswith("//"):
        return _check_absolute(f"{urlsplit(page_url).scheme}:{href}", href)

    root = site_root(page_url)
    if href.startswith("/"):
        return _check_absolute(root + href, href)
    return _check_absolute(root + current_directory(page_url) + href, href)
