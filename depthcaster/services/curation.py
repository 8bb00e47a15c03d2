"""Curation bookkeeping: curating, un-curating, cascade deletion and interactions."""

import logging
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from depthcaster.database import upsert
from depthcaster.models.cast_reply import CastReply
from depthcaster.models.curated_cast import (
    PARENT_CAST_PLACEHOLDER_HASH,
    CastTag,
    CuratedCast,
    CuratedCastInteraction,
    CuratorCastCuration,
)
from depthcaster.models.poll import Poll, PollOption, PollResponse
from depthcaster.schemas.cast import CastData
from depthcaster.services import neynar
from depthcaster.services.cache import feed_cache
from depthcaster.services.engagement import cast_metadata, cast_timestamp
from depthcaster.services.users import ensure_user, upsert_authors

logger = logging.getLogger(__name__)

INTERACTION_TYPES = ("reply", "like", "recast", "quote")


async def ensure_placeholder_cast(db: AsyncSession) -> None:
    """The placeholder curated cast that display-only parent rows hang off."""
    stmt = upsert(db, CuratedCast).values(
        cast_hash=PARENT_CAST_PLACEHOLDER_HASH,
        cast_data=CastData(hash=PARENT_CAST_PLACEHOLDER_HASH),
    )
    await db.execute(stmt.on_conflict_do_nothing(index_elements=["cast_hash"]))


async def resolve_curation_target(cast_hash: str, raw: Optional[dict] = None) -> Optional[CastData]:
    """Payload of the cast that should actually be curated.

    Replies are swapped for their parent; if the parent cannot be fetched
    the reply itself is kept.
    """
    cast = CastData.parse(raw) if raw else None
    if cast is None or cast.hash != cast_hash:
        cast = await neynar.lookup_cast(cast_hash)
    if cast is None or not cast.parent_hash:
        return cast

    try:
        parent = await neynar.lookup_cast(cast.parent_hash)
    except neynar.NeynarError as e:
        logger.warning(f"Could not fetch parent {cast.parent_hash} of {cast.hash}, curating the reply: {e}")
        return cast
    if parent is None:
        logger.info(f"Parent {cast.parent_hash} of {cast.hash} not found, curating the reply")
        return cast
    logger.info(f"{cast.hash} is a reply, curating parent {parent.hash}")
    return parent


async def is_curated_by(db: AsyncSession, cast_hash: str, curator_fid: int) -> bool:
    result = await db.execute(
        select(CuratorCastCuration.id).where(
            CuratorCastCuration.cast_hash == cast_hash,
            CuratorCastCuration.curator_fid == curator_fid,
        )
    )
    return result.scalar_one_or_none() is not None


async def curate_cast(db: AsyncSession, cast: CastData, curator_fid: int) -> bool:
    """Store the cast (first curator wins attribution) and this curator's curation.

    Returns ``False`` when this curator had already curated it.
    """
    await ensure_user(db, curator_fid)
    await upsert_authors(db, [cast])

    stmt = upsert(db, CuratedCast).values(
        cast_hash=cast.hash,
        cast_data=cast,
        cast_created_at=cast_timestamp(cast),
        curator_fid=curator_fid,
        parent_hash=cast.parent_hash,
        **cast_metadata(cast),
    )
    await db.execute(stmt.on_conflict_do_nothing(index_elements=["cast_hash"]))

    stmt = upsert(db, CuratorCastCuration).values(cast_hash=cast.hash, curator_fid=curator_fid)
    result = await db.execute(stmt.on_conflict_do_nothing(index_elements=["cast_hash", "curator_fid"]))
    feed_cache.clear()
    if result.rowcount == 0:
        return False
    logger.info(f"FID {curator_fid} curated {cast.hash}")
    return True


async def delete_curated_cast(db: AsyncSession, cast_hash: str) -> Dict[str, int]:
    """Remove a curated cast and everything that hangs off it."""
    counts: Dict[str, int] = {}

    result = await db.execute(
        delete(CuratedCastInteraction).where(CuratedCastInteraction.curated_cast_hash == cast_hash)
    )
    counts["interactions"] = result.rowcount
    result = await db.execute(delete(CastTag).where(CastTag.cast_hash == cast_hash))
    counts["tags"] = result.rowcount
    result = await db.execute(delete(CuratorCastCuration).where(CuratorCastCuration.cast_hash == cast_hash))
    counts["curations"] = result.rowcount
    result = await db.execute(delete(CastReply).where(CastReply.curated_cast_hash == cast_hash))
    counts["replies"] = result.rowcount

    poll_ids = select(Poll.id).where(Poll.cast_hash == cast_hash).scalar_subquery()
    await db.execute(delete(PollResponse).where(PollResponse.poll_id.in_(poll_ids)))
    await db.execute(delete(PollOption).where(PollOption.poll_id.in_(poll_ids)))
    result = await db.execute(delete(Poll).where(Poll.cast_hash == cast_hash))
    counts["polls"] = result.rowcount

    await db.execute(delete(CuratedCast).where(CuratedCast.cast_hash == cast_hash))
    feed_cache.clear()
    logger.info(f"Deleted curated cast {cast_hash}: {counts}")
    return counts


async def remove_curation(db: AsyncSession, cast_hash: str, curator_fid: int) -> Optional[bool]:
    """Drop one curator's curation.

    Returns ``None`` if there was none, otherwise whether the cast itself
    was removed because no curations remain.
    """
    result = await db.execute(
        delete(CuratorCastCuration).where(
            CuratorCastCuration.cast_hash == cast_hash,
            CuratorCastCuration.curator_fid == curator_fid,
        )
    )
    if result.rowcount == 0:
        return None
    feed_cache.clear()

    remaining = await db.execute(
        select(func.count(CuratorCastCuration.id)).where(CuratorCastCuration.cast_hash == cast_hash)
    )
    if remaining.scalar():
        return False
    await delete_curated_cast(db, cast_hash)
    return True


async def delete_reply(db: AsyncSession, reply_hash: str) -> Optional[List[str]]:
    """Remove a stored reply and every reply beneath it.

    The hash is matched trimmed and case-insensitively. Returns the deleted
    hashes, or ``None`` if no such reply is stored.
    """
    result = await db.execute(
        select(CastReply.reply_cast_hash)
        .where(func.lower(CastReply.reply_cast_hash) == reply_hash.strip().lower())
        .limit(1)
    )
    stored_hash = result.scalar_one_or_none()
    if stored_hash is None:
        return None

    doomed = [stored_hash]
    seen = {stored_hash}
    level = [stored_hash]
    while level:
        result = await db.execute(
            select(CastReply.reply_cast_hash).where(CastReply.parent_cast_hash.in_(level))
        )
        level = [h for h in result.scalars().all() if h and h not in seen]
        seen.update(level)
        doomed.extend(level)

    await db.execute(delete(CastReply).where(CastReply.reply_cast_hash.in_(doomed)))
    feed_cache.clear()
    logger.info(f"Deleted reply {stored_hash} and {len(doomed) - 1} descendant(s)")
    return doomed


async def curation_status(db: AsyncSession, cast_hash: str) -> Dict:
    result = await db.execute(
        select(CuratorCastCuration.curator_fid)
        .where(CuratorCastCuration.cast_hash == cast_hash)
        .order_by(CuratorCastCuration.created_at.asc(), CuratorCastCuration.id.asc())
    )
    fids = list(result.scalars().all())
    return {"cast_hash": cast_hash, "is_curated": bool(fids), "curator_fids": fids}


# ── Interactions ──
async def curated_root_for(db: AsyncSession, cast_hash: str) -> Optional[str]:
    """The curated cast whose thread contains ``cast_hash``, if any."""
    result = await db.execute(
        select(CuratedCast.cast_hash).where(
            CuratedCast.cast_hash == cast_hash,
            CuratedCast.cast_hash != PARENT_CAST_PLACEHOLDER_HASH,
        )
    )
    if result.scalar_one_or_none():
        return cast_hash

    result = await db.execute(
        select(CastReply.curated_cast_hash).where(
            CastReply.reply_cast_hash == cast_hash,
            CastReply.curated_cast_hash != PARENT_CAST_PLACEHOLDER_HASH,
        )
    )
    found = result.scalar_one_or_none()
    if found:
        return found

    result = await db.execute(
        select(CuratedCastInteraction.curated_cast_hash)
        .where(CuratedCastInteraction.target_cast_hash == cast_hash)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def record_interaction(
    db: AsyncSession, target_cast_hash: str, interaction_type: str, user_fid: int
) -> Optional[str]:
    """Track an interaction on a curated thread. Returns the curated root, if any."""
    if interaction_type not in INTERACTION_TYPES:
        raise ValueError(f"Unknown interaction type: {interaction_type}")
    curated_hash = await curated_root_for(db, target_cast_hash)
    if curated_hash is None:
        return None

    stmt = upsert(db, CuratedCastInteraction).values(
        curated_cast_hash=curated_hash,
        target_cast_hash=target_cast_hash,
        interaction_type=interaction_type,
        user_fid=user_fid,
    )
    await db.execute(stmt.on_conflict_do_nothing())
    return curated_hash


async def remove_interaction(
    db: AsyncSession, target_cast_hash: str, interaction_type: str, user_fid: int
) -> int:
    result = await db.execute(
        delete(CuratedCastInteraction).where(
            CuratedCastInteraction.target_cast_hash == target_cast_hash,
            CuratedCastInteraction.interaction_type == interaction_type,
            CuratedCastInteraction.user_fid == user_fid,
        )
    )
    return result.rowcount
