"""Domain reputation API."""
from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from serendip.celery_app import celery
from serendip.errors import ReputationComputeFailure
from serendip.models.reputation import DomainReputation
from serendip.reputation import DomainReputationManager

router = APIRouter(prefix="/api/domains", tags=["domains"])
logger = logging.getLogger(__name__)


class DomainReputationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    domain: str
    score: float
    trust_score: float
    approved_count: int
    rejected_count: int
    flagged_count: int
    avg_quality_score: float
    avg_engagement_rate: float
    total_content: int
    is_blacklisted: bool
    blacklist_reason: str | None = None
    last_updated: datetime | None = None


class BlacklistRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


def _manager(request: Request) -> DomainReputationManager:
    return request.app.state.reputation_manager


def _normalize(domain: str) -> str:
    return domain.strip().lower()


@router.get("/top", response_model=list[DomainReputationRead])
async def top_domains(request: Request, limit: int = 50) -> list[DomainReputation]:
    return await _manager(request).top_domains(min(max(limit, 1), 200))


@router.get("/blacklisted", response_model=list[DomainReputationRead])
async def blacklisted_domains(request: Request) -> list[DomainReputation]:
    return await _manager(request).blacklisted()


@router.post("/reputation/update-all", status_code=202)
async def update_all_reputations(days_threshold: int | None = None) -> dict[str, str]:
    result = celery.send_task(
        "serendip.workers.reputation.run_reputation_update_all",
        args=[days_threshold],
        queue="maintenance",
    )
    logger.info("Queued reputation batch %s", result.id)
    return {"status": "queued", "task_id": result.id}


@router.get("/{domain}/reputation", response_model=DomainReputationRead)
async def get_reputation(domain: str, request: Request) -> DomainReputation:
    record = await _manager(request).get(_normalize(domain))
    if record is None:
        raise HTTPException(status_code=404, detail="No reputation data for domain")
    return record


@router.post("/{domain}/reputation/refresh", response_model=DomainReputationRead)
async def refresh_reputation(domain: str, request: Request) -> DomainReputation:
    try:
        record = await _manager(request).update(_normalize(domain))
    except ReputationComputeFailure as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    if record is None:
        raise HTTPException(status_code=404, detail="No active content for domain")
    return record


@router.post("/{domain}/blacklist", response_model=DomainReputationRead)
async def blacklist_domain(domain: str, payload: BlacklistRequest, request: Request) -> DomainReputation:
    return await _manager(request).blacklist(_normalize(domain), payload.reason.strip())


@router.post("/{domain}/unblacklist", response_model=DomainReputationRead)
async def unblacklist_domain(domain: str, request: Request) -> DomainReputation:
    return await _manager(request).unblacklist(_normalize(domain))
