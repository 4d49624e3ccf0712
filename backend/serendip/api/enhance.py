"""Metadata enhancement API."""
from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field

from serendip.enrichment import MetadataEnricher

router = APIRouter(prefix="/api/enhance", tags=["enrichment"])


class EnhanceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content_ids: list[str] | None = Field(default=None, alias="contentIds")
    batch_size: int = Field(default=10, ge=1, le=50, alias="batchSize")


def _enricher(request: Request) -> MetadataEnricher:
    return request.app.state.enricher


@router.post("/metadata")
async def enhance_metadata(payload: EnhanceRequest, request: Request) -> dict[str, Any]:
    report = await _enricher(request).enhance(payload.content_ids, payload.batch_size)
    return {
        "processed": report.processed,
        "enhanced": report.enhanced,
        "results": [asdict(outcome) for outcome in report.results],
    }


@router.get("/status")
async def enhancement_status(request: Request) -> dict[str, int]:
    return await _enricher(request).status()
