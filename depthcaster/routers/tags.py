"""Tags router — admin labels on casts."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from depthcaster.database import as_utc, get_db, upsert
from depthcaster.models.curated_cast import CastTag
from depthcaster.schemas.curation import TagCreate
from depthcaster.services.roles import ADMINISTER, require_capability

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tags", tags=["tags"])


@router.get("")
async def list_tags(cast_hash: str, db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(CastTag).where(CastTag.cast_hash == cast_hash).order_by(CastTag.tag)
    )
    tags = []
    for tag in result.scalars().all():
        created_at = as_utc(tag.created_at)
        tags.append(
            {
                "tag": tag.tag,
                "admin_fid": tag.admin_fid,
                "created_at": created_at.isoformat() if created_at else None,
            }
        )
    return {"cast_hash": cast_hash, "tags": tags}


@router.post("")
async def add_tag(body: TagCreate, db: AsyncSession = Depends(get_db)):
    tag = body.tag.strip().lower()
    if not tag or not body.cast_hash:
        raise HTTPException(status_code=400, detail="cast_hash and tag are required")
    await require_capability(db, body.admin_fid, ADMINISTER, "Admin role required")

    stmt = upsert(db, CastTag).values(cast_hash=body.cast_hash, tag=tag, admin_fid=body.admin_fid)
    result = await db.execute(stmt.on_conflict_do_nothing(index_elements=["cast_hash", "tag"]))
    if result.rowcount == 0:
        raise HTTPException(status_code=409, detail="Tag already exists on this cast")
    logger.info(f"FID {body.admin_fid} tagged {body.cast_hash} with {tag}")
    return {"success": True, "cast_hash": body.cast_hash, "tag": tag}


@router.delete("")
async def remove_tag(cast_hash: str, tag: str, admin_fid: int, db: AsyncSession = Depends(get_db)):
    await require_capability(db, admin_fid, ADMINISTER, "Admin role required")
    result = await db.execute(
        delete(CastTag).where(CastTag.cast_hash == cast_hash, CastTag.tag == tag.strip().lower())
    )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Tag not found")
    return {"success": True}
