"""Source acquisition engine.

Turns one Source into a CrawlJob: gathers candidate URLs from a feed, a
sitemap or a bare website, then submits them one at a time while respecting
robots.txt and the domain crawl delay. Per-item failures are absorbed into
the job counters; anything that stops the whole crawl marks the job failed.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from serendip.config import settings
from serendip.core.topic_classifier import TopicClassifier
from serendip.core.topic_sync import assign_topics
from serendip.crawl_lease import CrawlLease
from serendip.db import utcnow
from serendip.errors import (
    ConcurrencyExceeded,
    CrawlCancelled,
    FeedParseFailure,
    ItemSubmissionFailure,
)
from serendip.feeds import FeedReader
from serendip.metrics import (
    ACTIVE_CRAWLS_GAUGE,
    CRAWL_DURATION_SECONDS,
    CRAWL_ITEMS_TOTAL,
    CRAWL_JOBS_TOTAL,
    CRAWL_REJECTED_TOTAL,
)
from serendip.models.content import ContentItem
from serendip.models.crawl import CrawlHistory, CrawlJob, CrawlJobStatus
from serendip.models.source import Source, SourceType
from serendip.robots import RobotsPolicyClient
from serendip.sitemaps import SitemapReader, filter_by_recency
from serendip.sources import domain_from_url

logger = logging.getLogger(__name__)

EnrichmentDispatcher = Callable[[list[str]], None]


@dataclass
class DiscoveredItem:
    url: str
    title: str | None = None
    description: str | None = None


@dataclass
class SubmitProgress:
    found: int = 0
    submitted: int = 0
    failed: int = 0
    new_content_ids: list[str] = field(default_factory=list)


class CancellationToken:
    """Cooperative cancellation flag whose waits return early once set."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CrawlCancelled("Crawl cancelled")

    async def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``. Returns True if cancelled during the wait."""
        if seconds <= 0:
            return self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


def send_enrichment_task(content_ids: list[str]) -> None:
    from serendip.celery_app import celery

    celery.send_task(
        "serendip.workers.enrich.run_enrichment",
        args=[content_ids],
        queue="enrich",
    )


class AcquisitionEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        policy_client: RobotsPolicyClient,
        feed_reader: FeedReader,
        sitemap_reader: SitemapReader,
        classifier: TopicClassifier,
        max_concurrent: int | None = None,
        enqueue_enrichment: EnrichmentDispatcher | None = send_enrichment_task,
        lease: CrawlLease | None = None,
        sitemap_recency_days: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.policy_client = policy_client
        self.feed_reader = feed_reader
        self.sitemap_reader = sitemap_reader
        self.classifier = classifier
        self.max_concurrent = max_concurrent if max_concurrent is not None else settings.MAX_CONCURRENT_CRAWLS
        self._enqueue_enrichment = enqueue_enrichment if settings.AUTO_ENHANCE_METADATA else None
        self._lease = lease
        self.sitemap_recency_days = (
            sitemap_recency_days if sitemap_recency_days is not None else settings.SITEMAP_RECENCY_DAYS
        )
        self._active: set[str] = set()
        self._tokens: dict[str, CancellationToken] = {}
        self._background: set[asyncio.Task] = set()

    # ── reservation ──

    @property
    def active_source_ids(self) -> frozenset[str]:
        return frozenset(self._active)

    def _reserve(self, source_id: str) -> CancellationToken:
        # Synchronous on purpose: check-and-insert must not be split by an await.
        if source_id in self._active:
            CRAWL_REJECTED_TOTAL.labels(reason="already_running").inc()
            raise ConcurrencyExceeded(f"Source {source_id} is already being crawled")
        if len(self._active) >= self.max_concurrent:
            CRAWL_REJECTED_TOTAL.labels(reason="ceiling").inc()
            raise ConcurrencyExceeded("Maximum concurrent crawls reached")
        if self._lease is not None and not self._lease.acquire(source_id):
            CRAWL_REJECTED_TOTAL.labels(reason="lease_held").inc()
            raise ConcurrencyExceeded(f"Source {source_id} is being crawled by another instance")

        self._active.add(source_id)
        token = CancellationToken()
        self._tokens[source_id] = token
        ACTIVE_CRAWLS_GAUGE.set(len(self._active))
        return token

    def _release(self, source_id: str) -> None:
        self._active.discard(source_id)
        self._tokens.pop(source_id, None)
        if self._lease is not None:
            self._lease.release(source_id)
        ACTIVE_CRAWLS_GAUGE.set(len(self._active))

    def request_cancellation(self, source_id: str) -> bool:
        token = self._tokens.get(source_id)
        if token is None:
            return False
        token.cancel()
        logger.info("Cancellation requested for source %s", source_id)
        return True

    # ── job lifecycle ──

    async def _begin(self, source: Source) -> tuple[CancellationToken, CrawlJob]:
        token = self._reserve(source.id)
        try:
            job = await self._create_job(source.id)
        except SQLAlchemyError:
            self._release(source.id)
            raise
        return token, job

    async def crawl_source(self, source: Source) -> CrawlJob:
        """Run one crawl. Raises ConcurrencyExceeded before any job row is created."""
        token, job = await self._begin(source)
        return await self._run(source, job, token)

    async def start_crawl(self, source: Source) -> CrawlJob:
        """Reserve and create the job, then finish the crawl in the background.

        Returns the ``running`` job immediately.
        """
        token, job = await self._begin(source)
        task = asyncio.create_task(self._run(source, job, token), name=f"crawl-{source.id}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return job

    async def drain(self) -> None:
        """Wait for background crawls started with :meth:`start_crawl`."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def _run(self, source: Source, job: CrawlJob, token: CancellationToken) -> CrawlJob:
        started = time.monotonic()
        progress = SubmitProgress()
        try:
            items = await self._gather(source)
            progress.found = len(items)
            logger.info("Found %s items from %s", len(items), source.name)
            await self._update_job(job.id, items_found=len(items))

            await self._submit_items(source, job.id, items, token, progress)

            if progress.new_content_ids:
                self._dispatch_enrichment(progress.new_content_ids)

            job = await self._complete_job(job.id, source, progress)
        except (FeedParseFailure, CrawlCancelled) as exc:
            logger.warning("Crawl of source %s failed: %s", source.id, exc)
            job = await self._fail_job(job.id, progress, str(exc))
        except Exception as exc:
            logger.exception("Unexpected error crawling source %s", source.id)
            job = await self._fail_job(job.id, progress, str(exc) or type(exc).__name__)
        finally:
            self._release(source.id)
            CRAWL_DURATION_SECONDS.labels(source_type=source.type).observe(time.monotonic() - started)

        CRAWL_JOBS_TOTAL.labels(source_type=source.type, status=job.status).inc()
        return job

    async def _create_job(self, source_id: str) -> CrawlJob:
        async with self._session_factory() as session:
            job = CrawlJob(
                source_id=source_id,
                status=CrawlJobStatus.RUNNING.value,
                started_at=utcnow(),
                items_found=0,
                items_submitted=0,
                items_failed=0,
            )
            session.add(job)
            await session.commit()
            return job

    async def _update_job(self, job_id: str, **values) -> None:
        async with self._session_factory() as session:
            job = await session.get(CrawlJob, job_id)
            if job is None:
                logger.warning("Crawl job %s no longer exists, dropping update", job_id)
                return
            for key, value in values.items():
                setattr(job, key, value)
            await session.commit()

    async def _complete_job(self, job_id: str, source: Source, progress: SubmitProgress) -> CrawlJob:
        now = utcnow()
        async with self._session_factory() as session:
            job = await session.get(CrawlJob, job_id)
            if job is None:
                logger.warning("Crawl job %s no longer exists, completion not persisted", job_id)
                job = CrawlJob(id=job_id, source_id=source.id)
            job.status = CrawlJobStatus.COMPLETED.value
            job.completed_at = now
            job.items_found = progress.found
            job.items_submitted = progress.submitted
            job.items_failed = progress.failed

            stored = await session.get(Source, source.id)
            if stored is not None:
                stored.last_crawled_at = now
                stored.next_crawl_at = now + timedelta(hours=stored.crawl_frequency_hours)
                source.last_crawled_at = stored.last_crawled_at
                source.next_crawl_at = stored.next_crawl_at
            await session.commit()
        logger.info(
            "Crawl completed for %s: found=%s submitted=%s failed=%s",
            source.id, progress.found, progress.submitted, progress.failed,
        )
        return job

    async def _fail_job(self, job_id: str, progress: SubmitProgress, message: str) -> CrawlJob:
        async with self._session_factory() as session:
            job = await session.get(CrawlJob, job_id)
            if job is None:
                logger.warning("Crawl job %s no longer exists, failure not persisted", job_id)
                job = CrawlJob(id=job_id)
            job.status = CrawlJobStatus.FAILED.value
            job.completed_at = utcnow()
            job.items_found = progress.found
            job.items_submitted = progress.submitted
            job.items_failed = progress.failed
            job.error_message = message[:2000]
            await session.commit()
            return job

    # ── gathering ──

    async def _gather(self, source: Source) -> list[DiscoveredItem]:
        if source.type == SourceType.FEED.value:
            return await self._from_feed(source.url)
        if source.type == SourceType.SITEMAP.value:
            entries = await self.sitemap_reader.parse_sitemap(source.url)
            recent = filter_by_recency(entries, self.sitemap_recency_days)
            return [DiscoveredItem(url=entry.url) for entry in recent]
        if source.type == SourceType.SITE.value:
            return await self._from_site(source)
        raise FeedParseFailure(source.url, f"Unsupported source type {source.type!r}")

    async def _from_feed(self, url: str) -> list[DiscoveredItem]:
        items = await self.feed_reader.parse_feed(url)
        return [DiscoveredItem(url=i.url, title=i.title, description=i.description) for i in items]

    async def _from_site(self, source: Source) -> list[DiscoveredItem]:
        domain = source.domain or domain_from_url(source.url)

        feeds = await self.feed_reader.discover_feeds(source.url)
        if feeds:
            logger.info("Discovered %s feeds for %s", len(feeds), domain)
            return await self._from_feed(feeds[0])

        sitemaps = (await self.policy_client.get_policy(domain)).sitemap_urls()
        if not sitemaps:
            sitemaps = await self.sitemap_reader.discover_sitemaps(domain)
        if sitemaps:
            logger.info("Discovered %s sitemaps for %s", len(sitemaps), domain)
            entries = await self.sitemap_reader.parse_sitemap(sitemaps[0])
            return [DiscoveredItem(url=entry.url) for entry in entries]

        logger.info("No feeds or sitemaps for %s, using homepage", domain)
        return [DiscoveredItem(url=source.url)]

    # ── submission ──

    async def _submit_items(
        self,
        source: Source,
        job_id: str,
        items: Iterable[DiscoveredItem],
        token: CancellationToken,
        progress: SubmitProgress,
    ) -> None:
        delay_ms = await self.policy_client.crawl_delay_ms(source.domain or domain_from_url(source.url))

        for item in items:
            token.raise_if_cancelled()

            if await self._content_exists(item.url):
                CRAWL_ITEMS_TOTAL.labels(outcome="duplicate").inc()
                logger.debug("Skipping already stored URL %s", item.url)
                continue

            if not await self.policy_client.is_allowed_url(item.url):
                CRAWL_ITEMS_TOTAL.labels(outcome="disallowed").inc()
                logger.info("robots.txt disallows %s", item.url)
                continue

            if await token.wait(delay_ms / 1000):
                raise CrawlCancelled("Crawl cancelled during rate-limit wait")

            try:
                content_id = await self._store_item(source, job_id, item)
            except ItemSubmissionFailure as exc:
                progress.failed += 1
                CRAWL_ITEMS_TOTAL.labels(outcome="failed").inc()
                logger.error("%s", exc)
                await self._record_failure(source.id, job_id, item, exc.reason)
                continue

            progress.submitted += 1
            progress.new_content_ids.append(content_id)
            CRAWL_ITEMS_TOTAL.labels(outcome="submitted").inc()
            if self._lease is not None:
                self._lease.renew(source.id)

    async def _content_exists(self, url: str) -> bool:
        async with self._session_factory() as session:
            found = await session.execute(select(ContentItem.id).where(ContentItem.url == url).limit(1))
            return found.first() is not None

    def resolve_topics(self, source: Source, item: DiscoveredItem) -> list[str]:
        topics = self.classifier.validate(source.topics or [])
        if topics:
            return topics
        return self.classifier.classify(item.url, item.title, item.description)

    async def _store_item(self, source: Source, job_id: str, item: DiscoveredItem) -> str:
        try:
            domain = domain_from_url(item.url)
            async with self._session_factory() as session:
                content = ContentItem(
                    url=item.url,
                    title=item.title or "Untitled",
                    description=item.description,
                    domain=domain,
                    source_id=source.id,
                    topics=[],
                    is_active=True,
                )
                session.add(content)
                await session.flush()
                await assign_topics(session, content, self.resolve_topics(source, item))
                session.add(
                    CrawlHistory(
                        source_id=source.id,
                        job_id=job_id,
                        url=item.url,
                        title=item.title,
                        discovered_at=utcnow(),
                        submitted=True,
                        submission_status="submitted",
                    )
                )
                await session.commit()
                return content.id
        except (SQLAlchemyError, ValueError) as exc:
            raise ItemSubmissionFailure(item.url, str(exc)) from exc

    async def _record_failure(self, source_id: str, job_id: str, item: DiscoveredItem, reason: str) -> None:
        try:
            async with self._session_factory() as session:
                session.add(
                    CrawlHistory(
                        source_id=source_id,
                        job_id=job_id,
                        url=item.url,
                        title=item.title,
                        discovered_at=utcnow(),
                        submitted=False,
                        submission_status="failed",
                        error_message=reason[:2000],
                    )
                )
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Could not record crawl history for %s: %s", item.url, exc)

    def _dispatch_enrichment(self, content_ids: list[str]) -> None:
        if self._enqueue_enrichment is None:
            logger.info("Auto-enhancement disabled, skipping %s items", len(content_ids))
            return
        try:
            self._enqueue_enrichment(list(content_ids))
            logger.info("Queued metadata enrichment for %s items", len(content_ids))
        except Exception as exc:
            logger.error("Failed to queue metadata enrichment: %s", exc)

    # ── scheduling queries ──

    async def sources_due(self, now: datetime | None = None) -> list[Source]:
        now = now or utcnow()
        async with self._session_factory() as session:
            rows = await session.execute(
                select(Source)
                .where(
                    Source.enabled.is_(True),
                    or_(Source.next_crawl_at.is_(None), Source.next_crawl_at <= now),
                )
                .order_by(Source.next_crawl_at.is_(None).desc(), Source.next_crawl_at)
            )
            return list(rows.scalars())
