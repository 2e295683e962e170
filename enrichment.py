#!/usr/bin/env python3
"""
Concurrent enrichment of feed items.

Each candidate item's own page is fetched and turned into a description,
with at most ``concurrency`` fetches in flight. A failure only affects its
own item, results keep the listing order, and the whole batch is bounded by
a deadline after which whatever finished is returned.
"""

from asyncio import Semaphore, Task, create_task, get_running_loop, wait
from functools import partial
from typing import Dict, List, Optional, Sequence

from config import config, get_logger
from document import inject_base_href, render_item_content
from errors import EnrichmentFailure
from models import CandidateItem, EnrichmentResult, ItemOutcome
from telemetry import trace_span

logger = get_logger("enrichment")


class EnrichmentPool:
    """Bounded task group for fetching item pages.

    A pool is meant to serve a single reload; nothing is shared between calls
    to enrich().

    Args:
        opener: Object providing ``open_stream(url)`` and ``close_stream(stream, abort)``.
        concurrency: Maximum simultaneous item fetches (defaults to config.ENRICH_CONCURRENCY).
        deadline: Seconds to wait for the whole batch (defaults to config.ENRICH_DEADLINE_SECONDS).
    """

    def __init__(self, opener, concurrency: Optional[int] = None, deadline: Optional[float] = None) -> None:
        self.opener = opener
        self.concurrency = config.ENRICH_CONCURRENCY if concurrency is None else concurrency
        self.deadline = config.ENRICH_DEADLINE_SECONDS if deadline is None else deadline

    async def _build_description(
        self,
        item: CandidateItem,
        content_selector: Optional[str],
        listing_base: str,
    ) -> str:
        # Item fetches carry no cancellation token: once submitted they run to completion
        stream = await self.opener.open_stream(item.link)
        try:
            body = await stream.read()
        finally:
            self.opener.close_stream(stream, abort=True)

        if content_selector is None:
            return inject_base_href(body, listing_base)

        # Parsing is CPU-bound; keep it off the event loop
        loop = get_running_loop()
        return await loop.run_in_executor(
            None, partial(render_item_content, body, item.link, content_selector)
        )

    @trace_span(
        "enrich_item",
        tracer_name="enrichment",
        attr_from_args=lambda self, index, item, *args, **kwargs: {
            "item.index": index,
            "item.link": item.link,
        },
    )
    async def _enrich_one(
        self,
        index: int,
        item: CandidateItem,
        content_selector: Optional[str],
        listing_base: str,
        feed_link: str,
        semaphore: Semaphore,
    ) -> EnrichmentResult:
        async with semaphore:
            try:
                description = await self._build_description(item, content_selector, listing_base)
            except Exception as e:
                logger.error(f"Load content failed: {feed_link}, {item.link}: {e}")
                return EnrichmentResult(index=index, outcome=ItemOutcome.UNENRICHED, error=e)
        return EnrichmentResult(index=index, outcome=ItemOutcome.ENRICHED, description=description)

    @trace_span(
        "enrich_items",
        tracer_name="enrichment",
        attr_from_args=lambda self, items, *args, **kwargs: {
            "items.count": len(items),
        },
    )
    async def enrich(
        self,
        items: Sequence[CandidateItem],
        content_selector: Optional[str],
        listing_base: str,
        feed_link: str,
    ) -> List[EnrichmentResult]:
        """Fetch every item page and build its description.

        Args:
            items: Candidate items in listing order.
            content_selector: Region of the item page to keep; None rewrites
                the raw page with a <base> pointing at ``listing_base``.
            listing_base: Directory URL of the listing page.
            feed_link: Pseudo-URI of the feed, for diagnostics.

        Returns:
            One result per item, in the same order as ``items``. Items whose
            enrichment failed or did not finish before the deadline are
            UNENRICHED.
        """
        if not items:
            return []

        semaphore = Semaphore(self.concurrency)
        tasks: Dict[Task, int] = {}
        for index, item in enumerate(items):
            task = create_task(
                self._enrich_one(index, item, content_selector, listing_base, feed_link, semaphore)
            )
            tasks[task] = index

        done, pending = await wait(set(tasks), timeout=self.deadline)

        results: List[Optional[EnrichmentResult]] = [None] * len(items)
        for task in done:
            results[tasks[task]] = task.result()

        if pending:
            logger.warning(
                f"Enrichment deadline of {self.deadline:g}s reached for {feed_link}: "
                f"{len(pending)} of {len(items)} items left without content"
            )
            for task in pending:
                task.cancel()
                index = tasks[task]
                results[index] = EnrichmentResult(
                    index=index,
                    outcome=ItemOutcome.UNENRICHED,
                    error=EnrichmentFailure(f"Deadline exceeded for {items[index].link}"),
                )

        enriched = sum(1 for result in results if result.outcome is ItemOutcome.ENRICHED)
        logger.info(f"Enriched {enriched} of {len(items)} items for {feed_link}")
        return results
