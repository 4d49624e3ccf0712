"""Page metadata enrichment: fills image, author, body text and word count."""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable
from urllib.parse import urljoin

import httpx
from selectolax.parser import HTMLParser
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from serendip.config import settings
from serendip.metrics import ENRICHMENT_ITEMS_TOTAL
from serendip.models.content import ContentItem

logger = logging.getLogger(__name__)

ENRICH_USER_AGENT = "Mozilla/5.0 (compatible; SerendipBot/1.0; +https://serendip.example/bot)"
CONTENT_SELECTORS = (
    "article",
    ".content",
    ".post-content",
    ".entry-content",
    ".article-body",
    "main",
    ".main-content",
    ".post",
    ".entry",
)
_WS_RE = re.compile(r"\s+")


def _attr(tree: HTMLParser, selector: str, name: str = "content") -> str | None:
    node = tree.css_first(selector)
    if node is None:
        return None
    value = (node.attributes or {}).get(name)
    return value.strip() if value and value.strip() else None


def _text(node) -> str | None:
    if node is None:
        return None
    value = node.text(separator=" ").strip()
    return value or None


def _parse_date(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _body_text(tree: HTMLParser) -> str | None:
    text = ""
    for selector in CONTENT_SELECTORS:
        node = tree.css_first(selector)
        if node is None:
            continue
        text = node.text(separator=" ").strip()
        if len(text) > 200:
            break
    if not text:
        text = " ".join(p.text(separator=" ").strip() for p in tree.css("p")).strip()
    if not text:
        return None
    text = _WS_RE.sub(" ", text).strip()[:2000]
    return text if len(text) > 50 else None


def extract_metadata(html: str, url: str) -> dict[str, Any]:
    """Pull page metadata out of ``html``; ``url`` resolves relative image links."""
    tree = HTMLParser(html)
    meta: dict[str, Any] = {}

    title = (
        _attr(tree, "meta[property='og:title']")
        or _attr(tree, "meta[name='twitter:title']")
        or _text(tree.css_first("title"))
        or _text(tree.css_first("h1"))
    )
    if title:
        meta["title"] = title[:200]

    description = (
        _attr(tree, "meta[property='og:description']")
        or _attr(tree, "meta[name='twitter:description']")
        or _attr(tree, "meta[name='description']")
    )
    if description:
        meta["description"] = description[:500]

    image = (
        _attr(tree, "meta[property='og:image']")
        or _attr(tree, "meta[name='twitter:image']")
        or _attr(tree, "img", "src")
    )
    if image:
        meta["image_url"] = urljoin(url, image)

    author = (
        _attr(tree, "meta[name='author']")
        or _attr(tree, "meta[property='article:author']")
        or _text(tree.css_first(".author"))
        or _text(tree.css_first("[rel='author']"))
    )
    if author:
        meta["author"] = author[:100]

    published = (
        _attr(tree, "meta[property='article:published_time']")
        or _attr(tree, "meta[name='date']")
        or _attr(tree, "time[datetime]", "datetime")
    )
    if published:
        parsed = _parse_date(published)
        if parsed is not None:
            meta["published_at"] = parsed

    body = _body_text(tree)
    if body:
        meta["content_text"] = body
        meta["word_count"] = len(body.split())

    return meta


@dataclass
class EnrichmentOutcome:
    id: str
    url: str
    status: str
    fields_added: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class EnrichmentReport:
    processed: int = 0
    enhanced: int = 0
    results: list[EnrichmentOutcome] = field(default_factory=list)


def _needs_enrichment():
    return or_(
        ContentItem.image_url.is_(None),
        ContentItem.author.is_(None),
        ContentItem.content_text.is_(None),
        ContentItem.word_count.is_(None),
    )


class MetadataEnricher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        timeout_s: float | None = None,
        delay_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self.timeout_s = timeout_s if timeout_s is not None else settings.ENRICH_TIMEOUT_S
        self.delay_s = delay_s if delay_s is not None else settings.ENRICH_DELAY_S
        self._transport = transport
        self._sleep = sleep

    async def _targets(self, content_ids: list[str] | None, batch_size: int) -> list[tuple[str, str]]:
        async with self._session_factory() as session:
            stmt = select(ContentItem.id, ContentItem.url)
            if content_ids:
                stmt = stmt.where(ContentItem.id.in_(content_ids))
            else:
                stmt = stmt.where(_needs_enrichment()).order_by(ContentItem.created_at.desc()).limit(batch_size)
            return [(row.id, row.url) for row in (await session.execute(stmt)).all()]

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> str:
        resp = await client.get(url)
        resp.raise_for_status()
        return resp.text

    async def enhance(self, content_ids: list[str] | None = None, batch_size: int = 10) -> EnrichmentReport:
        report = EnrichmentReport()
        targets = await self._targets(content_ids, batch_size)
        if not targets:
            logger.info("No content records need metadata enhancement")
            return report

        logger.info("Starting metadata enhancement for %s records", len(targets))
        async with httpx.AsyncClient(
            headers={"User-Agent": ENRICH_USER_AGENT},
            timeout=self.timeout_s,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            for index, (content_id, url) in enumerate(targets):
                outcome = await self._enhance_one(client, content_id, url)
                report.processed += 1
                report.enhanced += int(outcome.status == "enhanced")
                report.results.append(outcome)
                ENRICHMENT_ITEMS_TOTAL.labels(status=outcome.status).inc()
                if index < len(targets) - 1:
                    await self._sleep(self.delay_s)

        logger.info("Metadata enhancement completed: %s/%s enhanced", report.enhanced, report.processed)
        return report

    async def _enhance_one(self, client: httpx.AsyncClient, content_id: str, url: str) -> EnrichmentOutcome:
        try:
            html = await self._fetch(client, url)
        except httpx.HTTPError as exc:
            logger.warning("Failed to fetch %s for enrichment: %s", url, exc)
            return EnrichmentOutcome(id=content_id, url=url, status="error", error=str(exc))

        metadata = extract_metadata(html, url)
        if not metadata:
            return EnrichmentOutcome(id=content_id, url=url, status="no_metadata_found")

        try:
            async with self._session_factory() as session:
                content = await session.get(ContentItem, content_id)
                if content is None:
                    return EnrichmentOutcome(id=content_id, url=url, status="error", error="content vanished")
                for key, value in metadata.items():
                    setattr(content, key, value)
                await session.commit()
        except Exception as exc:
            logger.error("Error storing metadata for %s: %s", url, exc)
            return EnrichmentOutcome(id=content_id, url=url, status="error", error=str(exc))

        return EnrichmentOutcome(id=content_id, url=url, status="enhanced", fields_added=list(metadata))

    async def status(self) -> dict[str, int]:
        async with self._session_factory() as session:
            async def count(*criteria) -> int:
                stmt = select(func.count(ContentItem.id))
                if criteria:
                    stmt = stmt.where(*criteria)
                return (await session.execute(stmt)).scalar_one()

            return {
                "total_content": await count(),
                "needs_enhancement": await count(_needs_enrichment()),
                "has_image": await count(ContentItem.image_url.is_not(None)),
                "has_author": await count(ContentItem.author.is_not(None)),
                "has_content": await count(ContentItem.content_text.is_not(None)),
                "has_word_count": await count(ContentItem.word_count.is_not(None)),
            }
