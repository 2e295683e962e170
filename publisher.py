#!/usr/bin/env python3
"""
RSS publishing for synthesized feeds.

Renders a Feed produced by a reload into RSS 2.0 with feedgen and writes it
under PUBLIC_DIR/feeds/<slug>.xml. Files are replaced atomically so readers
never see a partially written feed.
"""

import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from feedgen.feed import FeedGenerator

from config import config, get_logger
from models import Feed
from telemetry import trace_span

# Module-specific logger
logger = get_logger("publisher")

GENERATOR = "AutoFeed"


def sanitize_xml_string(text: Optional[str]) -> str:
    """Remove NULL bytes and control characters that are not allowed in XML."""
    if not text:
        return ''
    if isinstance(text, bytes):
        text = text.decode('utf-8', errors='ignore')
    # Keep tab, newline and carriage return
    return ''.join(
        char for char in text
        if char in ('\t', '\n', '\r') or (ord(char) >= 32 and ord(char) != 0x7F)
    )


class FeedPublisher:
    """Turns feeds into RSS documents and publishes them to disk."""

    def __init__(self, public_dir: Optional[str] = None):
        self.public_dir = Path(public_dir or config.PUBLIC_DIR)
        self.rss_feeds_dir = self.public_dir / "feeds"

    def render_rss(self, feed: Feed, title: Optional[str] = None) -> str:
        """Render a feed as an RSS 2.0 document.

        Items come out in the same order as ``feed.items`` (listing order).
        Items without a description are emitted with their title and link only.
        """
        fg = FeedGenerator()
        fg.id(sanitize_xml_string(feed.link))
        fg.title(sanitize_xml_string(title or feed.base))
        fg.link(href=sanitize_xml_string(feed.base), rel='alternate')
        fg.description(sanitize_xml_string(f"Items from {feed.base}"))
        fg.generator(GENERATOR)
        fg.lastBuildDate(datetime.now(timezone.utc))

        # feedgen prepends new entries, so add them last-to-first
        for item in reversed(feed.items):
            fe = fg.add_entry()
            link = sanitize_xml_string(item.link)
            fe.title(sanitize_xml_string(item.title) or link or 'Untitled')
            fe.link(href=link)
            fe.guid(link, permalink=True)
            fe.pubDate(item.published)
            description = sanitize_xml_string(item.description)
            if description:
                fe.description(description)
                fe.content(description, type='html')

        try:
            return fg.rss_str(pretty=True).decode('utf-8')
        except ValueError as e:
            logger.error(f"Failed to generate RSS XML for {feed.link}: {e}")
            raise

    @trace_span(
        "publish_feed",
        tracer_name="publisher",
        attr_from_args=lambda self, slug, feed, title=None: {
            "feed.slug": slug,
            "feed.items": len(feed.items),
        },
    )
    def publish(self, slug: str, feed: Feed, title: Optional[str] = None) -> Path:
        """Write the RSS rendering of ``feed`` to ``feeds/<slug>.xml``.

        Returns:
            The path of the published file.
        """
        self.rss_feeds_dir.mkdir(parents=True, exist_ok=True)
        output_file = self.rss_feeds_dir / f"{slug}.xml"
        write_atomically(output_file, self.render_rss(feed, title))
        logger.info(f"Published RSS feed with {len(feed.items)} item(s) to {output_file}")
        return output_file


def write_atomically(output_file: Path, content: str) -> None:
    """Write ``content`` to a temporary file next to ``output_file`` and move it into place."""
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(mode='w', encoding='utf-8', suffix=output_file.suffix,
                                     dir=output_file.parent, delete=False) as temp_file:
        temp_file.write(content)
        temp_file.flush()
        os.fsync(temp_file.fileno())
        temp_path = temp_file.name

    # Atomic move
    shutil.move(temp_path, output_file)
