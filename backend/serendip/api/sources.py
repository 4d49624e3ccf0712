"""Source management API."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from serendip.db import get_session
from serendip.models.source import Source
from serendip.sources import SourceCreate, SourceRead, SourceUpdate, apply_source_update

router = APIRouter(prefix="/api/sources", tags=["sources"])
logger = logging.getLogger(__name__)


async def _get_or_404(db: AsyncSession, source_id: str) -> Source:
    source = await db.get(Source, source_id)
    if source is None:
        raise HTTPException(status_code=404, detail="Source not found")
    return source


@router.get("", response_model=list[SourceRead])
async def list_sources(
    enabled: bool | None = None,
    db: AsyncSession = Depends(get_session),
) -> list[Source]:
    stmt = select(Source).order_by(Source.created_at.desc())
    if enabled is not None:
        stmt = stmt.where(Source.enabled.is_(enabled))
    return list((await db.execute(stmt)).scalars())


@router.get("/{source_id}", response_model=SourceRead)
async def get_source(source_id: str, db: AsyncSession = Depends(get_session)) -> Source:
    return await _get_or_404(db, source_id)


@router.post("", status_code=201, response_model=SourceRead)
async def create_source(payload: SourceCreate, db: AsyncSession = Depends(get_session)) -> Source:
    source = payload.to_model()
    db.add(source)
    await db.commit()
    logger.info("Created source %s (%s)", source.name, source.type)
    return source


async def _update(source_id: str, payload: SourceUpdate, db: AsyncSession) -> Source:
    source = await _get_or_404(db, source_id)
    changes = apply_source_update(source, payload)
    if changes:
        await db.commit()
        logger.info("Updated source %s: %s", source_id, sorted(changes))
    return source


@router.put("/{source_id}", response_model=SourceRead)
async def replace_source(
    source_id: str, payload: SourceUpdate, db: AsyncSession = Depends(get_session)
) -> Source:
    return await _update(source_id, payload, db)


@router.patch("/{source_id}", response_model=SourceRead)
async def patch_source(
    source_id: str, payload: SourceUpdate, db: AsyncSession = Depends(get_session)
) -> Source:
    return await _update(source_id, payload, db)


@router.delete("/{source_id}", status_code=204)
async def delete_source(source_id: str, db: AsyncSession = Depends(get_session)) -> Response:
    source = await _get_or_404(db, source_id)
    await db.delete(source)
    await db.commit()
    logger.info("Deleted source %s", source_id)
    return Response(status_code=204)
