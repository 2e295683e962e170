#!/usr/bin/env python3
"""
Pseudo-URI parsing for synthesized feeds.

Two encodings are understood:

    autohttps://example.com/news@article h2 a@div.post-body   (triple form)
    autohttps://example.com/news~article h2 a                 (pair form)

The triple form is canonical: it carries a separate content selector for the
item pages. The pair form is kept for compatibility; items built from it get
the raw item page with an injected <base> tag instead of a selected region.
"""

import re
from typing import Optional
from urllib.parse import quote, unquote, urlsplit

from config import get_logger
from errors import MalformedSchemeError
from models import AutoLink, SchemeForm

logger = get_logger("scheme")

AUTO_PREFIX = "auto"
TRIPLE_DELIMITER = "@"
PAIR_DELIMITER = "~"
DEFAULT_CONTENT_SELECTOR = "body"
ALLOWED_PAGE_SCHEMES = ("http", "https")
_URL_SAFE = ":/?#[]!$&'()*+,;="

# A '%' that does not start a two-digit hex escape
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def _percent_decode(text: str, uri: str) -> str:
    """Strictly percent-decode a segment (UTF-8)."""
    if _BAD_ESCAPE.search(text):
        raise MalformedSchemeError(f"Invalid percent-encoding in {uri!r}", uri=uri)
    try:
        return unquote(text, encoding="utf-8", errors="strict")
    except UnicodeDecodeError as e:
        raise MalformedSchemeError(f"Percent-encoded bytes are not UTF-8 in {uri!r}: {e}", uri=uri) from e


def _strip_prefix(text: str, uri: str) -> str:
    if text[:len(AUTO_PREFIX)].lower() != AUTO_PREFIX:
        raise MalformedSchemeError(f"Missing '{AUTO_PREFIX}' scheme prefix in {uri!r}", uri=uri)
    return text[len(AUTO_PREFIX):]


def _check_page_url(page_url: str, uri: str) -> str:
    if not page_url:
        raise MalformedSchemeError(f"Empty page URL in {uri!r}", uri=uri)
    try:
        parts = urlsplit(page_url)
    except ValueError as e:
        raise MalformedSchemeError(f"Unparseable page URL {page_url!r}: {e}", uri=uri) from e
    if parts.scheme.lower() not in ALLOWED_PAGE_SCHEMES or not parts.hostname:
        raise MalformedSchemeError(
            f"Page URL must be an absolute http(s) URL, got {page_url!r}", uri=uri
        )
    return page_url


def detect_form(uri: str) -> SchemeForm:
    """Pick the grammar of a pseudo-URI from its delimiters."""
    if TRIPLE_DELIMITER in uri or "%40" in uri.upper():
        return SchemeForm.TRIPLE
    if PAIR_DELIMITER in uri:
        return SchemeForm.PAIR
    raise MalformedSchemeError(
        f"No '{TRIPLE_DELIMITER}' or '{PAIR_DELIMITER}' selector delimiter in {uri!r}", uri=uri
    )


def _parse_triple(uri: str) -> AutoLink:
    decoded = _percent_decode(uri, uri)
    segments = decoded.split(TRIPLE_DELIMITER)
    if len(segments) < 2:
        raise MalformedSchemeError(f"Missing item selector in {uri!r}", uri=uri)
    if len(segments) > 3:
        raise MalformedSchemeError(
            f"Too many '{TRIPLE_DELIMITER}' delimiters in {uri!r} (expected page@items@content)", uri=uri
        )

    page_url = _check_page_url(_strip_prefix(segments[0], uri), uri)
    item_selector = segments[1]
    if not item_selector.strip():
        raise MalformedSchemeError(f"Empty item selector in {uri!r}", uri=uri)

    content_selector = segments[2] if len(segments) > 2 else ""
    return AutoLink(
        page_url=page_url,
        item_selector=item_selector,
        content_selector=content_selector or DEFAULT_CONTENT_SELECTOR,
        form=SchemeForm.TRIPLE,
    )


def _parse_pair(uri: str) -> AutoLink:
    split_at = uri.rfind(PAIR_DELIMITER)
    if split_at < 0:
        raise MalformedSchemeError(f"Missing '{PAIR_DELIMITER}' selector delimiter in {uri!r}", uri=uri)

    page_url = _check_page_url(_strip_prefix(uri[:split_at], uri), uri)
    item_selector = _percent_decode(uri[split_at + 1:], uri)
    if not item_selector.strip():
        raise MalformedSchemeError(f"Empty item selector in {uri!r}", uri=uri)

    return AutoLink(
        page_url=page_url,
        item_selector=item_selector,
        content_selector=None,
        form=SchemeForm.PAIR,
    )


def parse_auto_link(uri: str, form: Optional[SchemeForm] = None) -> AutoLink:
    """Decode a pseudo-URI into page URL, item selector and content selector.

    Args:
        uri: The pseudo-URI, e.g. ``autohttps://host/path@item-sel@content-sel``.
        form: Force a grammar instead of detecting it from the delimiters.

    Raises:
        MalformedSchemeError: if the URI cannot be split into the required parts.
    """
    if not isinstance(uri, str) or not uri.strip():
        raise MalformedSchemeError("Empty pseudo-URI", uri=uri)
    uri = uri.strip()

    form = form or detect_form(uri)
    if form is SchemeForm.PAIR:
        auto_link = _parse_pair(uri)
    else:
        auto_link = _parse_triple(uri)
    logger.debug(
        f"Parsed {form.value} pseudo-URI {uri!r}: page={auto_link.page_url} "
        f"items={auto_link.item_selector!r} content={auto_link.content_selector!r}"
    )
    return auto_link


def format_auto_link(
    page_url: str,
    item_selector: str,
    content_selector: Optional[str] = None,
    form: SchemeForm = SchemeForm.TRIPLE,
) -> str:
    """Build a pseudo-URI that parse_auto_link() decodes back to the same parts.

    Selectors are percent-encoded. In the triple form the whole URI is decoded
    before splitting, so selectors containing '@' cannot be represented.
    """
    if form is SchemeForm.PAIR:
        if content_selector:
            raise ValueError("The pair form has no content selector")
        # quote() leaves '~' alone, but it is the pair delimiter
        selector = quote(item_selector, safe="").replace(PAIR_DELIMITER, "%7E")
        return f"{AUTO_PREFIX}{page_url}{PAIR_DELIMITER}{selector}"

    for selector in (item_selector, content_selector or ""):
        if TRIPLE_DELIMITER in selector:
            raise ValueError(f"Selector {selector!r} contains '{TRIPLE_DELIMITER}'")
    if TRIPLE_DELIMITER in page_url:
        raise ValueError(f"Page URL {page_url!r} contains '{TRIPLE_DELIMITER}'")
    # The page URL is decoded along with the selectors, so its own escapes are escaped again
    encoded_page = quote(page_url, safe=_URL_SAFE)
    return (
        f"{AUTO_PREFIX}{encoded_page}{TRIPLE_DELIMITER}{quote(item_selector, safe='')}"
        f"{TRIPLE_DELIMITER}{quote(content_selector or '', safe='')}"
    )
