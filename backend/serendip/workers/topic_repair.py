"""Hourly repair of drift between ContentItem.topics and its assignment rows."""
from __future__ import annotations

import asyncio
import logging

from serendip.celery_app import celery
from serendip.core.topic_sync import repair_topic_drift
from serendip.db import async_session_factory

logger = logging.getLogger(__name__)

REPAIR_BATCH_LIMIT = 500


@celery.task(name="serendip.workers.topic_repair.run_topic_repair")
def run_topic_repair(limit: int = REPAIR_BATCH_LIMIT) -> dict:
    return asyncio.run(_run_topic_repair(limit))


async def _run_topic_repair(limit: int) -> dict:
    summary = await repair_topic_drift(async_session_factory, limit=limit)
    if summary.checked:
        logger.info(
            "Topic drift repair finished",
            extra={"checked": summary.checked, "repaired": summary.repaired, "failed": summary.failed},
        )
    return {"checked": summary.checked, "repaired": summary.repaired, "failed": summary.failed}
