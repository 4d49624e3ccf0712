"""RSS/Atom reader and feed auto-discovery."""
from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urljoin, urlparse

import feedparser
import httpx
from selectolax.parser import HTMLParser

from serendip.config import settings
from serendip.errors import FeedParseFailure
from serendip.metrics import FEED_PARSE_FAILURES_TOTAL

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")
_FEED_LINK_TYPES = ("application/rss+xml", "application/atom+xml")
COMMON_FEED_PATHS = ("/feed", "/rss", "/rss.xml", "/feed.xml", "/atom.xml")
MAX_DESCRIPTION_CHARS = 500


@dataclass
class FeedItem:
    url: str
    title: str
    description: str | None = None
    published_at: datetime | None = None
    author: str | None = None


def clean_description(text: str | None) -> str | None:
    """Strip markup, decode entities and cap the length at 500 characters."""
    if not text:
        return None
    cleaned = html.unescape(_TAG_RE.sub("", text)).replace("\xa0", " ").strip()
    if not cleaned:
        return None
    if len(cleaned) > MAX_DESCRIPTION_CHARS:
        cleaned = cleaned[: MAX_DESCRIPTION_CHARS - 3] + "..."
    return cleaned


def _entry_datetime(entry: Any) -> datetime | None:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    try:
        return datetime(*parsed[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def entries_to_items(entries: list[Any]) -> list[FeedItem]:
    items: list[FeedItem] = []
    for entry in entries:
        link = (entry.get("link") or "").strip()
        if not link:
            continue
        content = entry.get("summary") or entry.get("description")
        if not content and entry.get("content"):
            content = entry["content"][0].get("value")
        items.append(
            FeedItem(
                url=link,
                title=(entry.get("title") or "").strip() or "Untitled",
                description=clean_description(content),
                published_at=_entry_datetime(entry),
                author=entry.get("author"),
            )
        )
    return items


class FeedReader:
    def __init__(
        self,
        *,
        user_agent: str | None = None,
        timeout_s: float | None = None,
        probe_timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.user_agent = user_agent or settings.CRAWLER_USER_AGENT
        self.timeout_s = timeout_s if timeout_s is not None else settings.FEED_TIMEOUT_S
        self.probe_timeout_s = (
            probe_timeout_s if probe_timeout_s is not None else settings.DISCOVERY_PROBE_TIMEOUT_S
        )
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={"User-Agent": self.user_agent},
            timeout=timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    async def parse_feed(self, url: str) -> list[FeedItem]:
        """Fetch and parse a feed. Raises FeedParseFailure on network or format errors."""
        try:
            async with self._client(self.timeout_s) as client:
                resp = await client.get(url)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            FEED_PARSE_FAILURES_TOTAL.labels(kind="feed").inc()
            raise FeedParseFailure(url, f"{type(exc).__name__}: {exc}") from exc

        feed = feedparser.parse(resp.content)
        if feed.bozo and not feed.entries:
            FEED_PARSE_FAILURES_TOTAL.labels(kind="feed").inc()
            raise FeedParseFailure(url, f"Malformed feed: {feed.get('bozo_exception')}")

        items = entries_to_items(feed.entries)
        logger.info("Parsed %s items from feed %s", len(items), url)
        return items

    async def discover_feeds(self, site_url: str) -> list[str]:
        """Return feed URLs advertised by or probed on ``site_url``, de-duplicated."""
        try:
            async with self._client(self.timeout_s) as client:
                resp = await client.get(site_url)
                resp.raise_for_status()
                feeds = self._advertised_feeds(resp.text, str(resp.url) or site_url)

                base = urlparse(site_url)
                for path in COMMON_FEED_PATHS:
                    candidate = f"{base.scheme}://{base.hostname}{path}"
                    if candidate in feeds:
                        continue
                    if await self._probe_xml(client, candidate):
                        feeds.append(candidate)
        except httpx.HTTPError as exc:
            logger.error("Error discovering feeds for %s: %s", site_url, exc)
            return []

        return list(dict.fromkeys(feeds))

    @staticmethod
    def _advertised_feeds(body: str, base_url: str) -> list[str]:
        tree = HTMLParser(body)
        feeds: list[str] = []
        for node in tree.css("link[type]"):
            attrs = node.attributes or {}
            link_type = (attrs.get("type") or "").strip().lower()
            href = (attrs.get("href") or "").strip()
            if link_type in _FEED_LINK_TYPES and href:
                feeds.append(urljoin(base_url, href))
        return feeds

    async def _probe_xml(self, client: httpx.AsyncClient, url: str) -> bool:
        try:
            resp = await client.head(url, timeout=self.probe_timeout_s)
        except httpx.HTTPError:
            return False
        return resp.is_success and "xml" in resp.headers.get("content-type", "")
