"""Watches router — follow a user's new casts."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from depthcaster.database import as_utc, get_db, upsert
from depthcaster.models.watch import UserWatch
from depthcaster.schemas.user import WatchCreate
from depthcaster.services.users import ensure_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["watches"])


async def _get_watch(db: AsyncSession, watcher_fid: int, watched_fid: int):
    result = await db.execute(
        select(UserWatch).where(
            UserWatch.watcher_fid == watcher_fid,
            UserWatch.watched_fid == watched_fid,
        )
    )
    return result.scalar_one_or_none()


def _watch_to_dict(watch: UserWatch) -> dict:
    created_at = as_utc(watch.created_at)
    return {
        "id": watch.id,
        "watcher_fid": watch.watcher_fid,
        "watched_fid": watch.watched_fid,
        "created_at": created_at.isoformat() if created_at else None,
    }


@router.post("/user-watch")
async def watch_user(body: WatchCreate, db: AsyncSession = Depends(get_db)):
    if body.watcher_fid == body.watched_fid:
        raise HTTPException(status_code=400, detail="Cannot watch yourself")

    existing = await _get_watch(db, body.watcher_fid, body.watched_fid)
    if existing is not None:
        return {"success": True, "watch": _watch_to_dict(existing)}

    await ensure_user(db, body.watcher_fid)
    await ensure_user(db, body.watched_fid)
    stmt = upsert(db, UserWatch).values(watcher_fid=body.watcher_fid, watched_fid=body.watched_fid)
    await db.execute(stmt.on_conflict_do_nothing(index_elements=["watcher_fid", "watched_fid"]))
    logger.info(f"FID {body.watcher_fid} now watches FID {body.watched_fid}")

    watch = await _get_watch(db, body.watcher_fid, body.watched_fid)
    return {"success": True, "watch": _watch_to_dict(watch)}


@router.delete("/user-watch")
async def unwatch_user(watcher_fid: int, watched_fid: int, db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        delete(UserWatch).where(
            UserWatch.watcher_fid == watcher_fid,
            UserWatch.watched_fid == watched_fid,
        )
    )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Watch not found")
    return {"success": True}


@router.get("/user-watch")
async def list_watched(watcher_fid: int, db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(UserWatch.watched_fid)
        .where(UserWatch.watcher_fid == watcher_fid)
        .order_by(UserWatch.created_at, UserWatch.id)
    )
    return {"watcher_fid": watcher_fid, "watched_fids": list(result.scalars().all())}


@router.get("/user/{fid}/watch-status")
async def watch_status(fid: int, viewer_fid: int, db: AsyncSession = Depends(get_db)):
    watch = await _get_watch(db, viewer_fid, fid)
    return {"fid": fid, "viewer_fid": viewer_fid, "is_watching": watch is not None}
