#!/usr/bin/env python3
"""
Feed synthesis from pseudo-URIs.

    autohttp[s]://host/path@<item-selector>@<item-page-content-selector (optional)>

e.g. Hacker News:

    autohttps://news.ycombinator.com/newest@span.titleline > a

A reload fetches the listing page once, turns every element matching the
item selector into a feed item (text as title, href as link), then fetches
each item's page concurrently to fill in its description.
"""

from datetime import datetime, timedelta, timezone
from itertools import count
from typing import List, Optional, Tuple

from aiohttp import ClientSession

from config import get_logger
from document import element_href, element_text, read_document, select
from enrichment import EnrichmentPool
from errors import AutoFeedError, FetchError, InvalidLinkError, MalformedSchemeError, NotModifiedError, SelectorError
from fetcher import ConditionalGetCache, ListingFetcher, PageOpener
from links import current_directory, resolve_link, site_root
from models import (
    AutoLink,
    CancellationToken,
    CandidateItem,
    ConditionalGetInfo,
    EnrichmentResult,
    Feed,
    ItemOutcome,
    ReloadResult,
    ReloadState,
    create_feed,
    create_news,
)
from scheme import parse_auto_link
from telemetry import trace_span

logger = get_logger("handler")

# Spacing between synthetic timestamps of consecutive items
TIMESTAMP_STEP = timedelta(milliseconds=1)


def _enter(uri: str, state: ReloadState) -> ReloadState:
    logger.debug(f"{uri}: {state.value}")
    return state


def extract_candidates(
    document, auto_link: AutoLink, feed: Feed
) -> Tuple[List[CandidateItem], List[EnrichmentResult]]:
    """Turn matched listing elements into candidate items.

    Returns the candidates in page order, plus a DROPPED result (indexed by
    element position) for every element whose href did not resolve.

    Raises:
        SelectorError: if the item selector is not valid CSS.
    """
    candidates: List[CandidateItem] = []
    dropped: List[EnrichmentResult] = []
    for position, element in enumerate(select(document, auto_link.item_selector)):
        title = element_text(element)
        href = element_href(element)
        try:
            link = resolve_link(href, auto_link.page_url)
        except InvalidLinkError as e:
            dropped.append(EnrichmentResult(index=position, outcome=ItemOutcome.DROPPED, error=e))
            logger.warning(f"Dropping item with unresolvable link: {feed.link}, {href!r}: {e}")
            continue
        candidates.append(CandidateItem(title=title, raw_href=href, link=link))
    return candidates, dropped


async def resolve_page_label(opener, page_url: str) -> Optional[str]:
    """Return the <title> of a page."""
    stream = await opener.open_stream(page_url)
    try:
        document = await read_document(stream, page_url)
    finally:
        opener.close_stream(stream)
    return document.title


class AutoFeedHandler:
    """Builds feeds for pseudo-URIs.

    Args:
        opener: Page opener to use. When omitted, each call opens its own
            aiohttp session and closes it on return.
        cache: Conditional-GET cache shared across reloads.
        concurrency: Item enrichment concurrency (defaults to config).
        deadline: Item enrichment deadline in seconds (defaults to config).
    """

    def __init__(
        self,
        opener=None,
        cache: Optional[ConditionalGetCache] = None,
        concurrency: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> None:
        self.opener = opener
        self.cache = cache if cache is not None else ConditionalGetCache()
        self.concurrency = concurrency
        self.deadline = deadline

    @trace_span(
        "reload",
        tracer_name="handler",
        attr_from_args=lambda self, uri, *args, **kwargs: {"feed.uri": uri},
    )
    async def reload(
        self,
        uri: str,
        cancel: Optional[CancellationToken] = None,
        conditional_get: Optional[ConditionalGetInfo] = None,
    ) -> ReloadResult:
        """Build a fresh feed for ``uri``.

        Args:
            uri: The pseudo-URI.
            cancel: Checked before the listing fetch and right after it.
            conditional_get: Values from a previous reload; an unchanged
                listing page then ends the call with NOT_MODIFIED.

        Returns:
            A ReloadResult whose ``feed`` is set only when the state is DONE.
            Cancellation and listing-level failures are reported through the
            state (and ``error``), never raised.
        """
        if self.opener is not None:
            return await self._reload(uri, self.opener, cancel, conditional_get)
        async with ClientSession() as session:
            return await self._reload(uri, PageOpener(session), cancel, conditional_get)

    async def _reload(
        self,
        uri: str,
        opener,
        cancel: Optional[CancellationToken],
        conditional_get: Optional[ConditionalGetInfo],
    ) -> ReloadResult:
        try:
            auto_link = parse_auto_link(uri)
        except MalformedSchemeError as e:
            logger.error(f"Parse auto schema failed: {uri}: {e}")
            return ReloadResult(state=ReloadState.FAILED, error=e)

        page_url = auto_link.page_url
        feed = create_feed(uri, page_url)

        state = _enter(uri, ReloadState.IDLE)
        listing = ListingFetcher(opener, self.cache)
        try:
            fetched = await listing.fetch(page_url, cancel=cancel, conditional_get=conditional_get)
        except NotModifiedError as e:
            logger.info(f"Listing page {page_url} not modified since last reload")
            return ReloadResult(
                state=ReloadState.NOT_MODIFIED, conditional_get=conditional_get, page_url=page_url, error=e
            )
        except FetchError as e:
            logger.error(f"Failed to fetch listing page {page_url} for {uri}: {e}")
            return ReloadResult(state=ReloadState.FAILED, page_url=page_url, error=e)
        if fetched is None:
            return ReloadResult(state=ReloadState.CANCELLED, page_url=page_url)

        stream, cg_info = fetched
        state = _enter(uri, ReloadState.LISTING_FETCHED)
        try:
            document = await read_document(stream, page_url)
        except FetchError as e:
            logger.error(f"Failed to read listing page {page_url} for {uri}: {e}")
            return ReloadResult(state=ReloadState.FAILED, page_url=page_url, error=e)
        finally:
            opener.close_stream(stream, abort=bool(cancel and cancel.cancelled))

        try:
            candidates, dropped = extract_candidates(document, auto_link, feed)
        except SelectorError as e:
            logger.error(f"Invalid item selector for {uri} (state {state.value}): {e}")
            return ReloadResult(state=ReloadState.FAILED, page_url=page_url, error=e)
        state = _enter(uri, ReloadState.ITEMS_EXTRACTED)
        logger.info(f"Matched {len(candidates)} items on {page_url} ({len(dropped)} dropped)")

        # Timestamps follow listing order regardless of enrichment outcome
        now = datetime.now(timezone.utc)
        sequence = count()
        news = [
            create_news(feed, candidate.title, candidate.link, now - next(sequence) * TIMESTAMP_STEP)
            for candidate in candidates
        ]

        state = _enter(uri, ReloadState.ENRICHING)
        pool = EnrichmentPool(opener, concurrency=self.concurrency, deadline=self.deadline)
        listing_base = site_root(page_url) + current_directory(page_url)
        results = await pool.enrich(candidates, auto_link.content_selector, listing_base, feed.link)
        for item, result in zip(news, results):
            if result.outcome is ItemOutcome.ENRICHED:
                item.description = result.description

        return ReloadResult(
            state=_enter(uri, ReloadState.DONE),
            feed=feed,
            conditional_get=cg_info,
            page_url=page_url,
            dropped=len(dropped),
        )

    async def get_label(self, uri: str) -> Optional[str]:
        """Return a display label for ``uri`` without loading any items.

        Only the pseudo-URI is parsed; the label is the page URL's own label
        (its <title>). Any failure is logged and gives None.
        """
        try:
            auto_link = parse_auto_link(uri)
            if self.opener is not None:
                return await resolve_page_label(self.opener, auto_link.page_url)
            async with ClientSession() as session:
                return await resolve_page_label(PageOpener(session), auto_link.page_url)
        except AutoFeedError as e:
            logger.error(f"Read autolink title error: {uri}: {e}")
            return None
