"""Curate router — curating casts and refreshing their threads."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from depthcaster.database import get_db
from depthcaster.models.curated_cast import CuratedCast
from depthcaster.schemas.curation import CurateRequest, RefreshRepliesRequest
from depthcaster.services import neynar
from depthcaster.services.cache import feed_cache
from depthcaster.services.conversation import fetch_and_store_conversation
from depthcaster.services.curation import (
    curate_cast,
    curation_status,
    is_curated_by,
    remove_curation,
    resolve_curation_target,
)
from depthcaster.services.roles import CURATE, require_capability

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/curate", tags=["curate"])


@router.post("")
async def curate(body: CurateRequest, db: AsyncSession = Depends(get_db)):
    """Curate a cast (or the cast it replies to) and pull in its conversation."""
    await require_capability(db, body.curator_fid, CURATE, "Curator role required")

    try:
        cast = await resolve_curation_target(body.cast_hash, body.cast_data)
    except neynar.NeynarError as e:
        logger.error(f"Could not fetch cast {body.cast_hash} for curation: {e}")
        raise HTTPException(status_code=500, detail="Could not fetch cast from Neynar")
    if cast is None:
        raise HTTPException(status_code=404, detail="Cast not found")

    if await is_curated_by(db, cast.hash, body.curator_fid):
        raise HTTPException(status_code=409, detail="Cast already curated by this curator")
    if not await curate_cast(db, cast, body.curator_fid):
        raise HTTPException(status_code=409, detail="Cast already curated by this curator")

    # A failed ingestion must not take the curation down with it.
    conversation = None
    try:
        async with db.begin_nested():
            conversation = await fetch_and_store_conversation(db, cast.hash)
    except Exception as e:
        logger.error(f"Conversation fetch after curating {cast.hash} failed: {e}")

    return {
        "success": True,
        "cast_hash": cast.hash,
        "curated_parent": cast.hash != body.cast_hash,
        "conversation": conversation,
    }


@router.delete("")
async def uncurate(cast_hash: str, curator_fid: int, db: AsyncSession = Depends(get_db)):
    """Withdraw a curator's curation; the cast goes once nobody curates it."""
    await require_capability(db, curator_fid, CURATE, "Curator role required")
    removed = await remove_curation(db, cast_hash, curator_fid)
    if removed is None:
        raise HTTPException(status_code=404, detail="Curation not found")
    return {"success": True, "cast_removed": removed}


@router.get("/status")
async def status(cast_hash: str, db: AsyncSession = Depends(get_db)):
    return await curation_status(db, cast_hash)


@router.post("/refresh-replies")
async def refresh_replies(body: RefreshRepliesRequest, db: AsyncSession = Depends(get_db)):
    """Re-run conversation ingestion for a curated cast."""
    result = await db.execute(select(CuratedCast.id).where(CuratedCast.cast_hash == body.cast_hash))
    if result.scalar_one_or_none() is None:
        raise HTTPException(status_code=404, detail="Cast is not curated")

    try:
        stats = await fetch_and_store_conversation(db, body.cast_hash)
    except neynar.NeynarError as e:
        logger.error(f"Refreshing replies for {body.cast_hash} failed: {e}")
        raise HTTPException(status_code=500, detail="Could not fetch conversation from Neynar")
    feed_cache.clear()
    return {"success": True, **stats}
