"""Conversation router — stored reply trees."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from depthcaster.database import get_db
from depthcaster.services.conversation import SORT_CHRONOLOGICAL, SORT_MODES, get_conversation

router = APIRouter(prefix="/api/conversation", tags=["conversation"])


@router.get("/database")
async def conversation_from_database(
    cast_hash: str = "",
    sort_by: str = SORT_CHRONOLOGICAL,
    db: AsyncSession = Depends(get_db),
):
    """Nested replies and quotes stored for a curated cast."""
    if not cast_hash:
        raise HTTPException(status_code=400, detail="cast_hash is required")
    if sort_by not in SORT_MODES:
        raise HTTPException(status_code=400, detail=f"sort_by must be one of: {', '.join(SORT_MODES)}")

    conversation = await get_conversation(db, cast_hash, sort_by)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Cast is not curated")
    return conversation
