"""Crawl control API: trigger, cancel, job and history listings."""
from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from serendip.db import get_session
from serendip.errors import ConcurrencyExceeded, SourceNotFound
from serendip.models.crawl import CrawlHistory, CrawlJob, CrawlJobStatus
from serendip.models.source import Source
from serendip.scheduler import CrawlScheduler

router = APIRouter(prefix="/api", tags=["crawl"])
logger = logging.getLogger(__name__)


class CrawlJobRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    source_id: str
    status: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    items_found: int
    items_submitted: int
    items_failed: int
    error_message: str | None = None


class CrawlHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    source_id: str
    job_id: str | None = None
    url: str
    title: str | None = None
    discovered_at: datetime
    submitted: bool
    submission_status: str | None = None
    error_message: str | None = None


def _scheduler(request: Request) -> CrawlScheduler:
    return request.app.state.scheduler


@router.post("/crawl/{source_id}", status_code=202, response_model=CrawlJobRead)
async def trigger_crawl(source_id: str, scheduler: CrawlScheduler = Depends(_scheduler)) -> CrawlJob:
    try:
        return await scheduler.trigger_crawl(source_id)
    except SourceNotFound:
        raise HTTPException(status_code=404, detail="Source not found")
    except ConcurrencyExceeded as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.post("/crawl/{source_id}/cancel")
async def cancel_crawl(source_id: str, scheduler: CrawlScheduler = Depends(_scheduler)) -> dict[str, object]:
    signalled = scheduler.signal_cancellation(source_id)
    if not signalled:
        raise HTTPException(status_code=404, detail="No running crawl for this source")
    return {"source_id": source_id, "cancellation_requested": True}


@router.get("/jobs", response_model=list[CrawlJobRead])
async def list_jobs(
    source_id: str | None = None,
    status: CrawlJobStatus | None = None,
    limit: int = 50,
    db: AsyncSession = Depends(get_session),
) -> list[CrawlJob]:
    stmt = select(CrawlJob).order_by(CrawlJob.started_at.desc()).limit(min(max(limit, 1), 200))
    if source_id:
        stmt = stmt.where(CrawlJob.source_id == source_id)
    if status:
        stmt = stmt.where(CrawlJob.status == status.value)
    return list((await db.execute(stmt)).scalars())


@router.get("/jobs/{job_id}", response_model=CrawlJobRead)
async def get_job(job_id: str, db: AsyncSession = Depends(get_session)) -> CrawlJob:
    job = await db.get(CrawlJob, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.get("/history/{source_id}", response_model=list[CrawlHistoryRead])
async def crawl_history(
    source_id: str,
    limit: int = 100,
    db: AsyncSession = Depends(get_session),
) -> list[CrawlHistory]:
    if await db.get(Source, source_id) is None:
        raise HTTPException(status_code=404, detail="Source not found")
    stmt = (
        select(CrawlHistory)
        .where(CrawlHistory.source_id == source_id)
        .order_by(CrawlHistory.discovered_at.desc())
        .limit(min(max(limit, 1), 500))
    )
    return list((await db.execute(stmt)).scalars())
