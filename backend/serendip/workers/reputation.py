"""Daily domain reputation refresh."""
from __future__ import annotations

import asyncio
import logging

from serendip.celery_app import celery
from serendip.db import async_session_factory
from serendip.reputation import DomainReputationManager

logger = logging.getLogger(__name__)


@celery.task(name="serendip.workers.reputation.run_reputation_update_all")
def run_reputation_update_all(days_threshold: int | None = None) -> dict:
    return asyncio.run(_run_reputation_update_all(days_threshold))


async def _run_reputation_update_all(days_threshold: int | None) -> dict:
    manager = DomainReputationManager(async_session_factory)
    result = await manager.update_all(days_threshold)
    logger.info("Reputation batch finished", extra=result)
    return result
