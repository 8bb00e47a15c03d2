"""Cast router — publishing and admin deletion of curated casts and replies."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from depthcaster.database import get_db
from depthcaster.models.curated_cast import PARENT_CAST_PLACEHOLDER_HASH, CuratedCast
from depthcaster.schemas.curation import PublishCastRequest
from depthcaster.services import neynar
from depthcaster.services.conversation import store_thread_reply
from depthcaster.services.curation import delete_curated_cast, delete_reply, record_interaction
from depthcaster.services.roles import ADMINISTER, require_capability

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cast", tags=["cast"])


@router.post("")
async def publish(body: PublishCastRequest, db: AsyncSession = Depends(get_db)):
    """Publish through Neynar; replies inside curated threads are stored right away."""
    if not body.signer_uuid:
        raise HTTPException(status_code=400, detail="signer_uuid is required")
    if not body.text.strip() and not body.embeds:
        raise HTTPException(status_code=400, detail="text or embeds are required")

    try:
        cast = await neynar.publish_cast(body.signer_uuid, body.text, body.parent, body.embeds)
    except neynar.NeynarError as e:
        logger.error(f"Publishing cast failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to publish cast")

    if body.parent:
        if cast.parent_hash is None:
            cast = cast.model_copy(update={"parent_hash": body.parent})
        if body.author_fid is not None and cast.author.fid is None:
            cast = cast.model_copy(update={"author": cast.author.model_copy(update={"fid": body.author_fid})})
        # The cast is already published; a failed write here is rolled back alone.
        try:
            async with db.begin_nested():
                curated_hash = await store_thread_reply(db, cast)
                if curated_hash and cast.author.fid is not None:
                    await record_interaction(db, cast.hash, "reply", cast.author.fid)
        except Exception as e:
            logger.warning(f"Could not record reply {cast.hash} to {body.parent}: {e}")

    return {"success": True, "cast": cast.to_payload()}


@router.delete("/curated/{cast_hash}")
async def delete_curated(cast_hash: str, fid: int, db: AsyncSession = Depends(get_db)):
    """Admin removal of a curated cast and everything attached to it."""
    await require_capability(db, fid, ADMINISTER, "Admin role required")

    if cast_hash == PARENT_CAST_PLACEHOLDER_HASH:
        raise HTTPException(status_code=404, detail="Cast is not curated")
    result = await db.execute(select(CuratedCast.id).where(CuratedCast.cast_hash == cast_hash))
    if result.scalar_one_or_none() is None:
        raise HTTPException(status_code=404, detail="Cast is not curated")

    deleted = await delete_curated_cast(db, cast_hash)
    return {"success": True, "deleted": deleted}


@router.delete("/reply/{reply_hash}")
async def delete_stored_reply(reply_hash: str, fid: int, db: AsyncSession = Depends(get_db)):
    """Admin removal of a stored reply together with the replies beneath it."""
    await require_capability(db, fid, ADMINISTER, "Admin or superadmin role required")

    deleted = await delete_reply(db, reply_hash)
    if deleted is None:
        logger.info(f"Reply {reply_hash!r} not found for deletion")
        raise HTTPException(status_code=404, detail="Reply not found")
    return {"success": True, "deleted": deleted}
