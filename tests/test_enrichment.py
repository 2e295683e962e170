import time

import pytest

from config import config
from conftest import FakeOpener, item_page
from enrichment import EnrichmentPool
from errors import EnrichmentFailure, FetchError
from models import CandidateItem, ItemOutcome

FEED_LINK = "autohttps://a.com/list@li > a@div.post"


def candidates(count):
    return [
        CandidateItem(title=f"Item {i}", raw_href=f"/items/{i}", link=f"https://a.com/items/{i}")
        for i in range(count)
    ]


@pytest.mark.asyncio
async def test_one_failing_item_does_not_affect_siblings():
    items = candidates(5)
    pages = {item.link: item_page(item.title) for item in items}
    pages[items[2].link] = FetchError("connection reset", url=items[2].link)
    pool = EnrichmentPool(FakeOpener(pages), concurrency=5, deadline=10)

    results = await pool.enrich(items, "div.post", "https://a.com/", FEED_LINK)

    assert len(results) == 5
    assert [r.index for r in results] == [0, 1, 2, 3, 4]
    assert [r.outcome for r in results] == [
        ItemOutcome.ENRICHED,
        ItemOutcome.ENRICHED,
        ItemOutcome.UNENRICHED,
        ItemOutcome.ENRICHED,
        ItemOutcome.ENRICHED,
    ]
    assert results[2].description is None
    assert isinstance(results[2].error, FetchError)
    assert "<p>Item 3</p>" in results[3].description


@pytest.mark.asyncio
async def test_results_keep_listing_order_when_finishing_out_of_order():
    items = candidates(5)
    # Earlier items take longer, so they finish last
    pages = {item.link: ((5 - i) * 0.02, item_page(item.title)) for i, item in enumerate(items)}
    pool = EnrichmentPool(FakeOpener(pages), concurrency=5, deadline=10)

    results = await pool.enrich(items, "div.post", "https://a.com/", FEED_LINK)

    for i, result in enumerate(results):
        assert result.index == i
        assert f"<p>Item {i}</p>" in result.description


@pytest.mark.asyncio
async def test_concurrency_is_capped():
    items = candidates(12)
    opener = FakeOpener({item.link: (0.01, item_page(item.title)) for item in items})
    pool = EnrichmentPool(opener, concurrency=3, deadline=10)

    results = await pool.enrich(items, "div.post", "https://a.com/", FEED_LINK)

    assert all(r.outcome is ItemOutcome.ENRICHED for r in results)
    assert opener.max_in_flight == 3
    assert len(opener.calls) == 12


@pytest.mark.asyncio
async def test_deadline_truncates_enrichment():
    items = candidates(3)
    pages = {item.link: item_page(item.title) for item in items}
    pages[items[1].link] = (30, item_page("slow"))
    pool = EnrichmentPool(FakeOpener(pages), concurrency=3, deadline=0.2)

    started = time.monotonic()
    results = await pool.enrich(items, "div.post", "https://a.com/", FEED_LINK)

    assert time.monotonic() - started < 5
    assert [r.outcome for r in results] == [
        ItemOutcome.ENRICHED,
        ItemOutcome.UNENRICHED,
        ItemOutcome.ENRICHED,
    ]
    assert isinstance(results[1].error, EnrichmentFailure)


@pytest.mark.asyncio
async def test_without_content_selector_injects_listing_base():
    items = candidates(1)
    page = "<html><head><title>t</title></head><body><p>raw</p></body></html>"
    opener = FakeOpener({items[0].link: page})
    pool = EnrichmentPool(opener, concurrency=1, deadline=10)

    results = await pool.enrich(items, None, "https://a.com/list/", FEED_LINK)

    assert results[0].description == (
        '<html><head><title>t</title><base href="https://a.com/list/"></head><body><p>raw</p></body></html>'
    )
    assert opener.streams[0].closed


@pytest.mark.asyncio
async def test_page_without_head_is_unenriched_in_raw_mode():
    items = candidates(1)
    pool = EnrichmentPool(FakeOpener({items[0].link: "<p>no head</p>"}), concurrency=1, deadline=10)

    results = await pool.enrich(items, None, "https://a.com/", FEED_LINK)

    assert results[0].outcome is ItemOutcome.UNENRICHED
    assert isinstance(results[0].error, EnrichmentFailure)


@pytest.mark.asyncio
async def test_empty_batch():
    pool = EnrichmentPool(FakeOpener({}), concurrency=1, deadline=10)

    assert await pool.enrich([], "body", "https://a.com/", FEED_LINK) == []


def test_pool_defaults_come_from_config(monkeypatch):
    monkeypatch.setattr(config, "ENRICH_CONCURRENCY", 7)
    monkeypatch.setattr(config, "ENRICH_DEADLINE_SECONDS", 42.0)

    pool = EnrichmentPool(FakeOpener({}))

    assert (pool.concurrency, pool.deadline) == (7, 42.0)


@pytest.mark.asyncio
async def test_explicit_zero_deadline_is_not_replaced_by_default():
    items = candidates(2)
    pool = EnrichmentPool(FakeOpener({item.link: item_page(item.title) for item in items}), concurrency=2, deadline=0)

    results = await pool.enrich(items, "div.post", "https://a.com/", FEED_LINK)

    assert pool.deadline == 0
    assert [r.outcome for r in results] == [ItemOutcome.UNENRICHED, ItemOutcome.UNENRICHED]
