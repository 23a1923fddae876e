from __future__ import annotations

import datetime as dt
import html
import json
import logging
from pathlib import Path
from typing import Optional, Sequence

from .config import IndexConfig, RssConfig
from .models import Page
from .render import write_text
from .utils import at_midnight, iso_date, join_url, rfc822_date

logger = logging.getLogger(__name__)

DESCRIPTION_LENGTH = 100
DEFAULT_INDEXED_ATTRIBUTES = ["index-title", "index-description", "index-body", "index-publishedon"]
VIRTUAL_PREFIX = "index-"


def feed_order(pages: Sequence[Page]) -> list[Page]:
    """Most recent first, then by title."""
    ordered = sorted(pages, key=lambda page: page.title)
    ordered.sort(key=lambda page: page.published_on, reverse=True)
    return ordered


def is_skipped(page: Page, attribute: str) -> bool:
    value = page.attribute(attribute)
    return value is not None and value != "false"


def default_description(page: Page) -> str:
    return page.plain_text()[:DESCRIPTION_LENGTH]


def describe(page: Page, keys: Sequence[str]) -> str:
    attributes = page.attributes
    for key in keys:
        value = attributes.get(key)
        if value is not None:
            return value
    return default_description(page)


def rss_item(page: Page, link: str) -> str:
    description = describe(page, ("rss-description", "description", "summary"))
    return "\n".join(
        [
            "    <item>",
            f"      <title>{html.escape(page.title)}</title>",
            f"      <description>{html.escape(description)}</description>",
            f"      <link>{html.escape(join_url(link, page.slug + '.html'))}</link>",
            f'      <guid isPermaLink="false">{html.escape(page.source)}</guid>',
            f"      <pubDate>{rfc822_date(at_midnight(page.published_on))}</pubDate>",
            "    </item>",
        ]
    )


def build_rss(config: RssConfig, pages: Sequence[Page], now: dt.datetime) -> str:
    # channel values come from the site configuration and may embed markup, keep them raw
    build_date = rfc822_date(now)
    items = [rss_item(page, config.link) for page in feed_order(pages) if not is_skipped(page, "rss-skip")]
    lines = [
        '<?xml version="1.0" encoding="UTF-8" ?>',
        '<rss version="2.0">',
        "  <channel>",
        f"    <title>{config.title}</title>",
        f"    <description>{config.description}</description>",
        f"    <link>{config.link}</link>",
        f"    <copyright>{config.copyright}</copyright>",
        f"    <ttl>{config.ttl}</ttl>",
        f"    <lastBuildDate>{build_date}</lastBuildDate>",
        f"    <pubDate>{build_date}</pubDate>",
    ]
    lines.extend(items)
    lines.extend(["</channel>", "</rss>", ""])
    return "\n".join(lines)


def write_rss(config: RssConfig, output_dir: Path, pages: Sequence[Page], now: Optional[dt.datetime] = None) -> Optional[Path]:
    if not config.enabled:
        logger.info("RSS feed is disabled")
        return None
    target = output_dir / config.location
    logger.info("Generating RSS feed at '%s'", target)
    write_text(target, build_rss(config, pages, now or dt.datetime.now(dt.timezone.utc)))
    return target


def index_value(page: Page, name: str, description: str) -> str:
    if name == "index-title":
        return page.title
    if name == "index-body":
        return page.body()
    if name == "index-description":
        return description
    if name == "index-gravatar":
        return page.gravatar
    if name == "index-publishedon":
        return iso_date(dt.datetime.combine(page.published_on, dt.time.min))
    return page.attributes.get(name, "")


def index_entry(page: Page, names: Sequence[str]) -> dict:
    description = describe(page, ("index-description", "description"))
    attributes = {}
    for name in names:
        key = name[len(VIRTUAL_PREFIX) :] if name.startswith(VIRTUAL_PREFIX) else name
        attributes[key] = index_value(page, name, description)
    return {
        "slug": page.slug,
        "title": page.title,
        "description": description,
        "attributes": attributes,
    }


def build_index(config: IndexConfig, pages: Sequence[Page]) -> dict:
    names = config.attributes if config.attributes is not None else DEFAULT_INDEXED_ATTRIBUTES
    items = [index_entry(page, names) for page in feed_order(pages) if not is_skipped(page, "index-skip")]
    return {"items": items}


def write_index(config: IndexConfig, output_dir: Path, pages: Sequence[Page]) -> Optional[Path]:
    if not config.enabled:
        logger.info("(JSON) Indexation is disabled")
        return None
    target = output_dir / config.location
    logger.info("Generating JSON index at '%s'", target)
    write_text(target, json.dumps(build_index(config, pages), ensure_ascii=False, separators=(",", ":")))
    return target
