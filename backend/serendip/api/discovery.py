"""Discovery API: serve the next recommendation."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Header, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from serendip.config import settings
from serendip.discovery_service import DiscoveryService
from serendip.errors import NoCandidatesAvailable

router = APIRouter(prefix="/api/discovery", tags=["discovery"])
logger = logging.getLogger(__name__)


class NextDiscoveryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    wildness: int = Field(default=50, ge=0, le=100)
    seen_ids: list[str] = Field(default_factory=list, alias="seenIds")


class NextDiscoveryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    discovery: dict[str, Any]
    score: float
    reason: str
    reset_required: bool | None = Field(default=None, alias="resetRequired")
    debug: dict[str, float] | None = None


@router.post("/next", response_model=NextDiscoveryResponse, response_model_by_alias=True, response_model_exclude_none=True)
async def next_discovery(
    payload: NextDiscoveryRequest,
    request: Request,
    x_user_id: str | None = Header(default=None),
) -> NextDiscoveryResponse:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="User authentication required")

    service: DiscoveryService = request.app.state.discovery_service
    try:
        result = await service.next_discovery(x_user_id, payload.wildness, payload.seen_ids)
    except NoCandidatesAvailable:
        raise HTTPException(status_code=404, detail="No content available")

    return NextDiscoveryResponse(
        discovery=result.discovery,
        score=result.score,
        reason=result.reason,
        reset_required=True if result.reset_required else None,
        debug=result.debug if settings.APP_ENV == "development" else None,
    )
