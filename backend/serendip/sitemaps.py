"""Sitemap reader: urlset parsing, sitemap-index recursion and discovery."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from xml.etree import ElementTree as ET

import httpx

from serendip.config import settings
from serendip.errors import FeedParseFailure
from serendip.metrics import FEED_PARSE_FAILURES_TOTAL

logger = logging.getLogger(__name__)

SITEMAP_NS = {"sm": "http://www.sitemaps.org/schemas/sitemap/0.9"}
COMMON_SITEMAP_PATHS = (
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/sitemap-index.xml",
    "/sitemap1.xml",
    "/sitemaps/sitemap.xml",
)
MAX_INDEX_DEPTH = 2
MAX_CHILD_SITEMAPS = 25


@dataclass
class SitemapEntry:
    url: str
    last_modified: datetime | None = None


def _parse_lastmod(value: str | None) -> datetime | None:
    if not value:
        return None
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def parse_sitemap_document(xml_bytes: bytes) -> tuple[list[SitemapEntry], list[str]]:
    """Return ``(entries, child_sitemap_urls)`` for a urlset or sitemapindex document."""
    root = ET.fromstring(xml_bytes)
    entries: list[SitemapEntry] = []
    children: list[str] = []
    kind = _local(root.tag)

    for node in root:
        loc = lastmod = None
        for child in node:
            name = _local(child.tag)
            if name == "loc":
                loc = (child.text or "").strip()
            elif name == "lastmod":
                lastmod = child.text
        if not loc:
            continue
        if kind == "sitemapindex":
            children.append(loc)
        else:
            entries.append(SitemapEntry(url=loc, last_modified=_parse_lastmod(lastmod)))
    return entries, children


def filter_by_recency(
    items: list[SitemapEntry],
    days: int = 30,
    *,
    now: datetime | None = None,
) -> list[SitemapEntry]:
    """Keep undated entries and those modified within the last ``days`` days."""
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    return [item for item in items if item.last_modified is None or item.last_modified >= cutoff]


class SitemapReader:
    def __init__(
        self,
        *,
        user_agent: str | None = None,
        timeout_s: float | None = None,
        probe_timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.user_agent = user_agent or settings.CRAWLER_USER_AGENT
        self.timeout_s = timeout_s if timeout_s is not None else settings.SITEMAP_TIMEOUT_S
        self.probe_timeout_s = probe_timeout_s if probe_timeout_s is not None else settings.ROBOTS_TIMEOUT_S
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={"User-Agent": self.user_agent},
            timeout=self.timeout_s,
            follow_redirects=True,
            transport=self._transport,
        )

    async def parse_sitemap(self, url: str) -> list[SitemapEntry]:
        """Fetch a sitemap, following index files. Raises FeedParseFailure."""
        async with self._client() as client:
            entries = await self._collect(client, url, depth=0)
        logger.info("Parsed %s URLs from sitemap %s", len(entries), url)
        return entries

    async def _collect(self, client: httpx.AsyncClient, url: str, *, depth: int) -> list[SitemapEntry]:
        try:
            resp = await client.get(url)
            resp.raise_for_status()
            entries, children = parse_sitemap_document(resp.content)
        except httpx.HTTPError as exc:
            FEED_PARSE_FAILURES_TOTAL.labels(kind="sitemap").inc()
            raise FeedParseFailure(url, f"{type(exc).__name__}: {exc}") from exc
        except ET.ParseError as exc:
            FEED_PARSE_FAILURES_TOTAL.labels(kind="sitemap").inc()
            raise FeedParseFailure(url, f"Malformed XML: {exc}") from exc

        if children and depth < MAX_INDEX_DEPTH:
            for child_url in children[:MAX_CHILD_SITEMAPS]:
                try:
                    entries.extend(await self._collect(client, child_url, depth=depth + 1))
                except FeedParseFailure as exc:
                    logger.warning("Skipping child sitemap: %s", exc)
        return entries

    async def discover_sitemaps(self, domain: str) -> list[str]:
        found: list[str] = []
        async with self._client() as client:
            for path in COMMON_SITEMAP_PATHS:
                url = f"https://{domain}{path}"
                try:
                    resp = await client.head(url, timeout=self.probe_timeout_s)
                except httpx.HTTPError:
                    continue
                if resp.is_success:
                    found.append(url)
        return found
