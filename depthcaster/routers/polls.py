"""Polls router — poll definitions, responses and admin results."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from depthcaster.database import get_db
from depthcaster.models.curated_cast import CuratedCast
from depthcaster.schemas.poll import PollSubmit, PollUpsert
from depthcaster.services import polls
from depthcaster.services.roles import ADMINISTER, require_capability

router = APIRouter(prefix="/api", tags=["polls"])


@router.get("/poll/{key}")
async def get_poll(key: str, user_fid: Optional[int] = None, db: AsyncSession = Depends(get_db)):
    poll = await polls.get_poll(db, key)
    if poll is None:
        return {"poll": None}

    user_response = None
    if user_fid is not None:
        response = await polls.get_response(db, poll.id, user_fid)
        if response is not None:
            user_response = polls.response_to_dict(response)
    return {"poll": polls.poll_to_dict(poll), "user_response": user_response}


@router.post("/poll/{cast_hash}")
async def save_poll(cast_hash: str, body: PollUpsert, db: AsyncSession = Depends(get_db)):
    """Create or replace the poll attached to a curated cast."""
    await require_capability(db, body.user_fid, ADMINISTER, "Admin role required")

    if not body.question.strip():
        raise HTTPException(status_code=400, detail="question is required")
    try:
        choices = polls.validate_poll_definition(body.poll_type, body.options, body.choices)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = await db.execute(select(CuratedCast.id).where(CuratedCast.cast_hash == cast_hash))
    if result.scalar_one_or_none() is None:
        raise HTTPException(status_code=404, detail="Cast is not curated")

    if body.slug and body.slug.strip() and await polls.slug_taken(db, body.slug.strip(), cast_hash):
        raise HTTPException(status_code=409, detail="Slug is already used by another poll")

    poll = await polls.save_poll(
        db,
        cast_hash=cast_hash,
        question=body.question,
        poll_type=body.poll_type,
        options=body.options,
        choices=choices,
        slug=body.slug,
        created_by=body.user_fid,
    )
    return {"success": True, "poll": polls.poll_to_dict(poll)}


@router.post("/poll/{key}/submit")
async def submit(key: str, body: PollSubmit, db: AsyncSession = Depends(get_db)):
    poll = await polls.get_poll(db, key)
    if poll is None:
        raise HTTPException(status_code=404, detail="Poll not found")
    try:
        values = polls.validate_response(poll, body.rankings, body.choices, body.allocations)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await polls.submit_response(db, poll, body.user_fid, values)
    return {"success": True}


@router.get("/poll/{key}/results")
async def results(key: str, user_fid: int, db: AsyncSession = Depends(get_db)):
    """Collated results; admins only."""
    await require_capability(db, user_fid, ADMINISTER, "Admin role required")
    poll = await polls.get_poll(db, key)
    if poll is None:
        raise HTTPException(status_code=404, detail="Poll not found")
    return await polls.poll_results(db, poll)


@router.get("/polls")
async def list_polls(
    user_fid: int,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    db: AsyncSession = Depends(get_db),
):
    await require_capability(db, user_fid, ADMINISTER, "Admin role required")
    return {"polls": await polls.list_polls(db, sort_by, sort_order)}
