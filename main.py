#!/usr/bin/env python3
"""
AutoFeed command line orchestrator.

Modes:
    reload <uri>          Build the feed for a pseudo-URI and print it as RSS
                          (or write it to --output).
    label <uri>           Print the display label of a pseudo-URI.
    run [--only slug ..]  Reload every source in feeds.yaml and publish it
                          under PUBLIC_DIR/feeds/<slug>.xml.
    status                Print the effective configuration.
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from aiohttp import ClientSession

from config import config, get_logger
from errors import MalformedSchemeError
from fetcher import ConditionalGetCache, PageOpener
from handler import AutoFeedHandler
from models import ConditionalGetInfo, ReloadResult, ReloadState
from publisher import FeedPublisher, write_atomically
from scheme import parse_auto_link
from telemetry import init_telemetry, trace_span

# Module-specific logger
logger = get_logger("orchestrator")


class AutoFeedOrchestrator:
    """Drives reloads and publishing for the command line.

    ETag / Last-Modified pairs seen by ``run`` are kept in a JSON file at
    ``STATE_PATH`` (keyed by listing URL) so the next invocation can send
    conditional requests.
    """

    def __init__(self, public_dir: Optional[str] = None, state_path: Optional[str] = None) -> None:
        self.publisher = FeedPublisher(public_dir)
        self.state_path = Path(state_path or config.STATE_PATH)
        # Pairs from the previous run are only read; this run's go to self.cache
        self.previous = ConditionalGetCache(self._load_conditional_gets())
        self.cache = ConditionalGetCache(self.previous.entries())

    def _load_conditional_gets(self) -> Dict[str, ConditionalGetInfo]:
        if not self.state_path.exists():
            return {}
        try:
            with open(self.state_path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
            return {
                url: ConditionalGetInfo(etag=pair.get('etag'), last_modified=pair.get('last_modified'))
                for url, pair in raw.items()
            }
        except (OSError, ValueError, AttributeError) as e:
            logger.warning(f"⚠️ Ignoring unreadable conditional GET state {self.state_path}: {e}")
            return {}

    def _save_conditional_gets(self) -> None:
        entries = {
            url: {'etag': info.etag, 'last_modified': info.last_modified}
            for url, info in self.cache.entries().items()
            if not info.is_empty
        }
        try:
            write_atomically(self.state_path, json.dumps(entries, indent=2, sort_keys=True))
            logger.debug(f"Saved {len(entries)} conditional GET pair(s) to {self.state_path}")
        except OSError as e:
            logger.error(f"❌ Could not save conditional GET state to {self.state_path}: {e}")

    async def reload_uri(self, uri: str, output: Optional[str] = None) -> bool:
        """Reload a single pseudo-URI and emit its RSS."""
        logger.info(f"📡 Reloading {uri}")
        handler = AutoFeedHandler(cache=self.cache)
        result = await handler.reload(uri)
        if not result.ok:
            logger.error(f"❌ Reload of {uri} ended in state {result.state.value}: {result.error}")
            return False

        xml = self.publisher.render_rss(result.feed)
        if output:
            write_atomically(Path(output), xml)
            logger.info(f"✅ Wrote {len(result.feed.items)} item(s) to {output}")
        else:
            sys.stdout.write(xml)
        return True

    async def label(self, uri: str) -> bool:
        handler = AutoFeedHandler()
        label = await handler.get_label(uri)
        if label is None:
            return False
        print(label)
        return True

    async def _reload_source(self, slug: str, source: Dict, handler: AutoFeedHandler,
                             semaphore: asyncio.Semaphore) -> bool:
        async with semaphore:
            uri = source['uri']
            try:
                page_url = parse_auto_link(uri).page_url
            except MalformedSchemeError:
                # reload reports the malformed URI
                page_url = None
            previous = None
            # A 304 is only useful when there is a published feed to keep
            if page_url and (self.publisher.rss_feeds_dir / f"{slug}.xml").exists():
                previous = self.previous.lookup(page_url)
            result: ReloadResult = await handler.reload(uri, conditional_get=previous)
            if result.state is ReloadState.NOT_MODIFIED:
                logger.info(f"⏭️ {slug}: listing page unchanged, keeping published feed")
                return True
            if not result.ok:
                logger.error(f"❌ {slug}: reload ended in state {result.state.value}: {result.error}")
                if page_url:
                    # Roll back to the pair that matches the published feed
                    self.cache.store(page_url, self.previous.lookup(page_url) or ConditionalGetInfo())
                return False
            self.publisher.publish(slug, result.feed, source.get('title'))
            return True

    @trace_span(
        "run_sources",
        tracer_name="orchestrator",
        attr_from_args=lambda self, only_slugs=None: {
            "feed.only_slugs": ",".join(only_slugs) if only_slugs else "",
        },
    )
    async def run_sources(self, only_slugs: Optional[List[str]] = None) -> bool:
        """Reload and publish every configured source (or just ``only_slugs``).

        Returns True only when every selected source succeeded.
        """
        sources = config.FEED_SOURCES
        if only_slugs:
            unknown = [slug for slug in only_slugs if slug not in sources]
            for slug in unknown:
                logger.warning(f"⚠️ Unknown feed slug '{slug}' ignored")
            sources = {slug: cfg for slug, cfg in sources.items() if slug in only_slugs}

        if not sources:
            logger.warning("⚠️ No feed sources to process")
            return False

        logger.info(f"🚀 Reloading {len(sources)} feed source(s)")
        start_time = datetime.now(timezone.utc)
        semaphore = asyncio.Semaphore(config.SOURCE_CONCURRENCY)
        async with ClientSession() as session:
            handler = AutoFeedHandler(opener=PageOpener(session), cache=self.cache)
            tasks = [
                asyncio.create_task(self._reload_source(slug, cfg, handler, semaphore))
                for slug, cfg in sources.items()
            ]
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        self._save_conditional_gets()

        succeeded = 0
        for slug, outcome in zip(sources, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"❌ {slug}: unexpected error: {outcome}")
            elif outcome:
                succeeded += 1

        duration = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.info(f"🎉 {succeeded}/{len(sources)} source(s) published in {duration:.1f}s")
        return succeeded == len(sources)

    def check_status(self) -> dict:
        feeds_dir = self.publisher.rss_feeds_dir
        return {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'config': config.get_config_summary(),
            'sources': sorted(config.FEED_SOURCES),
            'published_feeds': len(list(feeds_dir.glob('*.xml'))) if feeds_dir.exists() else 0,
        }

    def print_status(self, status: dict):
        """Print formatted status information."""
        print(f"\n📊 AutoFeed Status")
        print(f"⏰ {status['timestamp']}")
        print(f"\n⚙️ Configuration:")
        print(json.dumps(status['config'], indent=2))
        print(f"\n📰 Sources: {', '.join(status['sources']) or '(none)'}")
        print(f"📡 Published feeds: {status['published_feeds']}")


def main():
    """Main entry point."""

    parser = argparse.ArgumentParser(description='AutoFeed: synthesize feeds from web pages')
    parser.add_argument('mode', choices=['reload', 'label', 'run', 'status'],
                        help='Operation mode')
    parser.add_argument('uri', nargs='?',
                        help='Pseudo-URI (reload and label modes)')
    parser.add_argument('--output', type=str,
                        help='Write the RSS to this file instead of stdout (reload mode)')
    parser.add_argument('--only', nargs='+', metavar='SLUG',
                        help='Only process these feeds.yaml slugs (run mode)')
    parser.add_argument('--public-dir', type=str,
                        help='Override PUBLIC_DIR')

    args = parser.parse_args()
    if args.mode in ('reload', 'label') and not args.uri:
        parser.error(f"{args.mode} mode needs a pseudo-URI")

    init_telemetry("autofeed")
    orchestrator = AutoFeedOrchestrator(args.public_dir)

    try:
        if args.mode == 'reload':
            success = asyncio.run(orchestrator.reload_uri(args.uri, args.output))
            sys.exit(0 if success else 1)

        elif args.mode == 'label':
            success = asyncio.run(orchestrator.label(args.uri))
            sys.exit(0 if success else 1)

        elif args.mode == 'run':
            success = asyncio.run(orchestrator.run_sources(args.only))
            sys.exit(0 if success else 1)

        elif args.mode == 'status':
            orchestrator.print_status(orchestrator.check_status())

    except KeyboardInterrupt:
        logger.info("👋 AutoFeed shutting down")


if __name__ == "__main__":
    main()
