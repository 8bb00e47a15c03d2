"""
Watch notifications: in-app rows plus a best-effort push per recipient.

Push delivery goes through ``PUSH_RELAY_URL`` when configured and is
simulated in the log otherwise.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests
from sqlalchemy import desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from depthcaster.config import settings
from depthcaster.database import as_utc, upsert
from depthcaster.models.notification import UserNotification
from depthcaster.models.watch import UserWatch
from depthcaster.schemas.cast import CastData

logger = logging.getLogger(__name__)

USER_WATCH_NOTIFICATION = "cast.watched"


def _send_push_sync(user_fid: int, payload: Dict[str, Any]) -> None:
    """Synchronous function to actually send or simulate the push."""
    if not settings.PUSH_RELAY_URL:
        logger.info(f"Simulated push to FID {user_fid}: {payload['title']} | {payload['body']}")
        return

    resp = requests.post(
        settings.PUSH_RELAY_URL,
        json={"user_fid": user_fid, **payload},
        timeout=10,
    )
    resp.raise_for_status()
    logger.info(f"Push relayed to FID {user_fid}")


async def send_push(user_fid: int, payload: Dict[str, Any]) -> None:
    await asyncio.to_thread(_send_push_sync, user_fid, payload)


def push_payload(cast: CastData) -> Dict[str, Any]:
    author = cast.author.username or cast.author.display_name or f"FID {cast.author.fid}"
    body = cast.body
    if len(body) > 140:
        body = body[:137] + "..."
    return {
        "title": f"New cast from @{author}",
        "body": body,
        "url": f"{settings.APP_URL}/cast/{cast.hash}",
        "data": {"cast_hash": cast.hash, "type": USER_WATCH_NOTIFICATION},
    }


async def watchers_of(db: AsyncSession, fid: int) -> List[int]:
    result = await db.execute(
        select(UserWatch.watcher_fid).where(UserWatch.watched_fid == fid).order_by(UserWatch.watcher_fid)
    )
    return list(result.scalars().all())


async def notify_watchers(db: AsyncSession, cast: CastData) -> Dict[str, int]:
    """Fan a watched author's new cast out to every watcher.

    Each watcher gets at most one in-app row per cast. Pushes are attempted
    one recipient at a time; a failure is logged and the loop carries on.
    """
    if cast.author.fid is None:
        return {"notified": 0, "pushed": 0}
    watchers = [fid for fid in await watchers_of(db, cast.author.fid) if fid != cast.author.fid]
    if not watchers:
        return {"notified": 0, "pushed": 0}

    recipients = []
    for watcher_fid in watchers:
        stmt = upsert(db, UserNotification).values(
            user_fid=watcher_fid,
            type=USER_WATCH_NOTIFICATION,
            cast_hash=cast.hash,
            cast_data=cast,
            author_fid=cast.author.fid,
            is_read=False,
        )
        result = await db.execute(stmt.on_conflict_do_nothing(index_elements=["user_fid", "cast_hash"]))
        if result.rowcount:
            recipients.append(watcher_fid)

    payload = push_payload(cast)
    pushed = 0
    for watcher_fid in recipients:
        try:
            await send_push(watcher_fid, payload)
            pushed += 1
        except Exception as e:
            logger.error(f"Push to FID {watcher_fid} for cast {cast.hash} failed: {e}")

    logger.info(f"Cast {cast.hash}: notified {len(recipients)} watcher(s), pushed {pushed}")
    return {"notified": len(recipients), "pushed": pushed}


# ── Reads ──
async def unread_count(db: AsyncSession, fid: int) -> int:
    result = await db.execute(
        select(func.count(UserNotification.id)).where(
            UserNotification.user_fid == fid,
            UserNotification.is_read == False,
        )
    )
    return result.scalar() or 0


def notification_to_dict(notification: UserNotification) -> Dict[str, Any]:
    created_at = as_utc(notification.created_at)
    return {
        "id": notification.id,
        "type": notification.type,
        "cast_hash": notification.cast_hash,
        "cast_data": notification.cast_data.to_payload() if notification.cast_data else None,
        "author_fid": notification.author_fid,
        "is_read": notification.is_read,
        "created_at": created_at.isoformat() if created_at else None,
    }


async def latest_notifications(db: AsyncSession, fid: int, limit: int) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(UserNotification)
        .where(UserNotification.user_fid == fid)
        .order_by(desc(UserNotification.created_at), desc(UserNotification.id))
        .limit(limit)
    )
    return [notification_to_dict(n) for n in result.scalars().all()]


async def mark_seen(db: AsyncSession, fid: int, notification_ids: Optional[List[int]] = None) -> int:
    stmt = update(UserNotification).where(
        UserNotification.user_fid == fid,
        UserNotification.is_read == False,
    )
    if notification_ids is not None:
        stmt = stmt.where(UserNotification.id.in_(notification_ids))
    result = await db.execute(stmt.values(is_read=True))
    return result.rowcount
