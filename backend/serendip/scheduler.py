"""Crawl scheduler.

A single cooperative asyncio timer, owned by the API lifespan, that fences
orphaned jobs on startup and then processes due sources sequentially every
``SCHEDULER_INTERVAL_S`` seconds.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from serendip.acquisition import AcquisitionEngine
from serendip.config import settings
from serendip.db import as_utc, utcnow
from serendip.errors import ConcurrencyExceeded, SourceNotFound
from serendip.models.crawl import CrawlJob, CrawlJobStatus
from serendip.models.source import Source

logger = logging.getLogger(__name__)

ORPHANED_JOB_MESSAGE = "Job interrupted by service restart"


def _is_due(source: Source, now_utc: datetime) -> bool:
    if not source.enabled:
        return False
    next_at = as_utc(source.next_crawl_at)
    return next_at is None or next_at <= now_utc


async def fence_orphaned_jobs(session_factory: async_sessionmaker[AsyncSession]) -> int:
    """Mark every ``running`` job as failed. Only safe before any crawl starts."""
    async with session_factory() as session:
        result = await session.execute(
            update(CrawlJob)
            .where(CrawlJob.status == CrawlJobStatus.RUNNING.value)
            .values(
                status=CrawlJobStatus.FAILED.value,
                completed_at=utcnow(),
                error_message=ORPHANED_JOB_MESSAGE,
            )
        )
        await session.commit()
        count = result.rowcount or 0
    if count:
        logger.warning("Marked %s orphaned crawl jobs as failed", count)
    return count


class CrawlScheduler:
    def __init__(
        self,
        engine: AcquisitionEngine,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        interval_s: float | None = None,
    ) -> None:
        self.engine = engine
        self._session_factory = session_factory
        self.interval_s = interval_s if interval_s is not None else settings.SCHEDULER_INTERVAL_S
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()
        self._tick_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def recover_orphaned_jobs(self) -> int:
        return await fence_orphaned_jobs(self._session_factory)

    async def start(self) -> None:
        if self.running:
            logger.info("Scheduler already running")
            return
        await self.recover_orphaned_jobs()
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop(), name="crawl-scheduler")
        logger.info("Crawl scheduler started", extra={"interval_s": self.interval_s})

    async def stop(self) -> None:
        """Stop ticking. An in-flight crawl is allowed to finish."""
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
        await self.engine.drain()
        logger.info("Crawl scheduler stopped")

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_due_crawls()
            except Exception:
                logger.exception("Scheduler tick failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_s)
            except asyncio.TimeoutError:
                continue

    async def run_due_crawls(self) -> int:
        """Crawl every due source, one after another. Returns the number attempted."""
        if self._tick_lock.locked():
            logger.info("Previous scheduler tick still running, skipping")
            return 0
        async with self._tick_lock:
            due = await self.engine.sources_due(utcnow())
            if not due:
                logger.debug("No sources due for crawling")
                return 0

            logger.info("Found %s sources due for crawling", len(due))
            attempted = 0
            for source in due:
                if self._stopping.is_set():
                    break
                # Re-read: a long earlier crawl may have outlived this snapshot.
                async with self._session_factory() as session:
                    fresh = await session.get(Source, source.id)
                if fresh is None or not _is_due(fresh, utcnow()):
                    continue
                attempted += 1
                try:
                    job = await self.engine.crawl_source(fresh)
                    logger.info("Crawl of %s finished with status %s", fresh.name, job.status)
                except ConcurrencyExceeded as exc:
                    logger.info("Skipping %s: %s", fresh.name, exc)
                except Exception:
                    logger.exception("Failed to crawl source %s", fresh.id)
            return attempted

    async def trigger_crawl(self, source_id: str, *, wait: bool = False) -> CrawlJob:
        """Start a crawl now. Without ``wait`` the returned job is still ``running``."""
        async with self._session_factory() as session:
            source = await session.get(Source, source_id)
        if source is None:
            raise SourceNotFound(source_id)
        logger.info("Manually triggering crawl for %s", source.name)
        if wait:
            return await self.engine.crawl_source(source)
        return await self.engine.start_crawl(source)

    def signal_cancellation(self, source_id: str) -> bool:
        return self.engine.request_cancellation(source_id)
