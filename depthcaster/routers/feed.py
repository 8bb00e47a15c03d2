"""Feed router — the curated feed."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from depthcaster.config import settings
from depthcaster.database import get_db
from depthcaster.services.feed import (
    FEED_SORT_MODES,
    SORT_RECENT_REPLY,
    assemble_feed,
    parse_cursor,
    parse_fid_list,
)

router = APIRouter(prefix="/api/feed", tags=["feed"])


@router.get("")
async def get_feed(
    viewer_fid: Optional[int] = None,
    cursor: Optional[str] = None,
    limit: Optional[int] = None,
    sort_by: str = SORT_RECENT_REPLY,
    curator_fids: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    """Curated casts, newest sort time first, with a cursor for the next page."""
    if sort_by not in FEED_SORT_MODES:
        raise HTTPException(status_code=400, detail=f"sort_by must be one of: {', '.join(FEED_SORT_MODES)}")

    limit = settings.FEED_DEFAULT_LIMIT if limit is None else limit
    if limit <= 0:
        raise HTTPException(status_code=400, detail="limit must be positive")
    limit = min(limit, settings.FEED_MAX_LIMIT)

    try:
        cursor_at, cursor_hash = parse_cursor(cursor) if cursor else (None, None)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid cursor")
    try:
        fids = parse_fid_list(curator_fids)
    except ValueError:
        raise HTTPException(status_code=400, detail="curator_fids must be a comma-separated list of FIDs")

    return await assemble_feed(
        db,
        limit=limit,
        sort_by=sort_by,
        cursor=cursor_at,
        cursor_hash=cursor_hash,
        viewer_fid=viewer_fid,
        curator_fids=fids,
    )
