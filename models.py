#!/usr/bin/env python3
"""
Data model for synthesized feeds.

Everything here is created fresh by a single reload and never shared across
reloads; the only state that outlives a call is the conditional-GET cache,
which lives in fetcher.py.
"""

from __future__ import annotations

from asyncio import Event
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class SchemeForm(Enum):
    """Which pseudo-URI grammar an AutoLink was decoded from."""

    TRIPLE = "triple"  # auto<scheme>://page@item-selector@content-selector
    PAIR = "pair"      # auto<scheme>://page~selector


@dataclass(frozen=True)
class AutoLink:
    page_url: str
    item_selector: str
    content_selector: Optional[str]
    form: SchemeForm = SchemeForm.TRIPLE


@dataclass(frozen=True)
class CandidateItem:
    """An item matched on the listing page, with its link already absolute."""

    title: str
    raw_href: str
    link: str


@dataclass
class NewsItem:
    title: str
    link: str
    published: datetime
    base: Optional[str] = None
    description: Optional[str] = None


@dataclass
class Feed:
    """A synthesized feed.

    Attributes:
        link: The pseudo-URI the feed was built from.
        base: The listing page URL.
        items: Items in listing-page order.
    """

    link: str
    base: str
    items: List[NewsItem] = field(default_factory=list)


@dataclass(frozen=True)
class ConditionalGetInfo:
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.etag or self.last_modified)


class ItemOutcome(Enum):
    ENRICHED = "enriched"        # description set
    UNENRICHED = "unenriched"    # kept, but without description
    DROPPED = "dropped"          # link did not resolve; not in the feed


@dataclass
class EnrichmentResult:
    index: int
    outcome: ItemOutcome
    description: Optional[str] = None
    error: Optional[BaseException] = None


class ReloadState(Enum):
    IDLE = "idle"
    LISTING_FETCHED = "listing_fetched"
    ITEMS_EXTRACTED = "items_extracted"
    ENRICHING = "enriching"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"
    NOT_MODIFIED = "not_modified"


@dataclass
class ReloadResult:
    """Outcome of one reload. `feed` is only set when `state` is DONE."""

    state: ReloadState
    feed: Optional[Feed] = None
    conditional_get: Optional[ConditionalGetInfo] = None
    page_url: Optional[str] = None
    error: Optional[BaseException] = None
    dropped: int = 0

    @property
    def ok(self) -> bool:
        return self.state is ReloadState.DONE


class CancellationToken:
    """Cooperative cancellation signal passed explicitly through a reload."""

    def __init__(self) -> None:
        self._event = Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


def create_feed(link: str, base: str) -> Feed:
    """Create an empty feed for a pseudo-URI and its listing page."""
    return Feed(link=link, base=base)


def create_news(feed: Feed, title: str, link: str, published: datetime) -> NewsItem:
    """Create a news item and append it to the feed, keeping insertion order."""
    item = NewsItem(title=title, link=link, published=published, base=feed.base)
    feed.items.append(item)
    return item
