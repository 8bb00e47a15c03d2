"""Notifications router — listing and read state."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from depthcaster.database import get_db
from depthcaster.schemas.user import NotificationsSeen
from depthcaster.services.notifications import latest_notifications, mark_seen, unread_count

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
async def get_notifications(fid: int, limit: int = 20, db: AsyncSession = Depends(get_db)):
    """Latest notifications plus the unread count."""
    if limit <= 0:
        raise HTTPException(status_code=400, detail="limit must be positive")
    limit = min(limit, 100)
    return {
        "unread_count": await unread_count(db, fid),
        "notifications": await latest_notifications(db, fid, limit),
    }


@router.get("/count")
async def get_count(fid: int, db: AsyncSession = Depends(get_db)):
    return {"unread_count": await unread_count(db, fid)}


@router.post("/seen")
async def seen(body: NotificationsSeen, db: AsyncSession = Depends(get_db)):
    """Mark the given notifications (or all of them) as read."""
    updated = await mark_seen(db, body.fid, body.notification_ids)
    return {"success": True, "updated": updated}
