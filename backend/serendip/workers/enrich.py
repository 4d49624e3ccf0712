"""Metadata enrichment task, dispatched after each crawl."""
from __future__ import annotations

import asyncio
import logging

from serendip.celery_app import celery
from serendip.db import async_session_factory
from serendip.enrichment import MetadataEnricher

logger = logging.getLogger(__name__)


@celery.task(name="serendip.workers.enrich.run_enrichment")
def run_enrichment(content_ids: list[str] | None = None, batch_size: int = 10) -> dict:
    return asyncio.run(_run_enrichment(content_ids, batch_size))


async def _run_enrichment(content_ids: list[str] | None, batch_size: int) -> dict:
    enricher = MetadataEnricher(async_session_factory)
    report = await enricher.enhance(content_ids=content_ids or None, batch_size=batch_size)
    logger.info(
        "Enrichment task finished",
        extra={"processed": report.processed, "enhanced": report.enhanced},
    )
    return {"processed": report.processed, "enhanced": report.enhanced}
