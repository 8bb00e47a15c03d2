"""
Curated feed assembly.

Pages are selected in two phases: the first query ranks ``(cast_hash,
sort_time)`` pairs only, the second loads payloads for the chosen page.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from depthcaster.database import as_utc
from depthcaster.models.cast_reply import CastReply
from depthcaster.models.curated_cast import (
    PARENT_CAST_PLACEHOLDER_HASH,
    CuratedCast,
    CuratedCastInteraction,
    CuratorCastCuration,
)
from depthcaster.models.user import User
from depthcaster.schemas.cast import CastData
from depthcaster.services import neynar
from depthcaster.services.cache import feed_cache, make_key
from depthcaster.services.conversation import reply_row, store_replies, stored_casts
from depthcaster.services.roles import curator_fids as role_curator_fids

logger = logging.getLogger(__name__)

SORT_RECENT_REPLY = "recent-reply"
SORT_RECENTLY_CURATED = "recently-curated"
SORT_TIME_OF_CAST = "time-of-cast"
FEED_SORT_MODES = (SORT_RECENT_REPLY, SORT_RECENTLY_CURATED, SORT_TIME_OF_CAST)
CURSOR_SEPARATOR = "|"


def parse_cursor(cursor: str) -> Tuple[datetime, Optional[str]]:
    """``"<iso>|<cast_hash>"`` → ``(aware UTC datetime, cast_hash)``.

    A bare ISO 8601 value is accepted and carries no hash. Raises ``ValueError``.
    """
    stamp, _, cast_hash = cursor.strip().partition(CURSOR_SEPARATOR)
    value = datetime.fromisoformat(stamp.strip().replace("Z", "+00:00"))
    return as_utc(value), cast_hash.strip() or None


def format_cursor(sort_time: datetime, cast_hash: str) -> str:
    return f"{sort_time.isoformat()}{CURSOR_SEPARATOR}{cast_hash}"


def parse_fid_list(raw: Optional[str]) -> Optional[List[int]]:
    """``"1, 2,3"`` → ``[1, 2, 3]``. Raises ``ValueError`` on junk."""
    if raw is None or not raw.strip():
        return None
    return sorted({int(part) for part in raw.split(",") if part.strip()})


def _sort_time_column(sort_by: str, eligible, latest_reply):
    if sort_by == SORT_RECENTLY_CURATED:
        return eligible.c.last_curated_at
    if sort_by == SORT_TIME_OF_CAST:
        return func.coalesce(CuratedCast.cast_created_at, CuratedCast.created_at)
    return func.coalesce(latest_reply.c.last_reply_at, CuratedCast.cast_created_at, CuratedCast.created_at)


async def select_page(
    db: AsyncSession,
    fids: Sequence[int],
    sort_by: str,
    limit: int,
    cursor: Optional[datetime] = None,
    cursor_hash: Optional[str] = None,
) -> List[tuple]:
    """Phase one: ``[(cast_hash, sort_time), ...]`` for one page.

    Rows sharing the cursor time continue below ``cursor_hash``, matching the
    ``(sort_time, cast_hash)`` descending order.
    """
    eligible = (
        select(
            CuratorCastCuration.cast_hash.label("cast_hash"),
            func.max(CuratorCastCuration.created_at).label("last_curated_at"),
        )
        .where(CuratorCastCuration.curator_fid.in_(fids))
        .group_by(CuratorCastCuration.cast_hash)
        .subquery("eligible")
    )
    latest_reply = (
        select(
            CastReply.curated_cast_hash.label("cast_hash"),
            func.max(CastReply.cast_created_at).label("last_reply_at"),
        )
        .where(CastReply.curated_cast_hash != PARENT_CAST_PLACEHOLDER_HASH)
        .group_by(CastReply.curated_cast_hash)
        .subquery("latest_reply")
    )
    sort_time = _sort_time_column(sort_by, eligible, latest_reply)

    stmt = (
        select(CuratedCast.cast_hash, sort_time.label("sort_time"))
        .join(eligible, eligible.c.cast_hash == CuratedCast.cast_hash)
        .outerjoin(latest_reply, latest_reply.c.cast_hash == CuratedCast.cast_hash)
    )
    if cursor is not None:
        if cursor_hash:
            stmt = stmt.where(
                or_(sort_time < cursor, and_(sort_time == cursor, CuratedCast.cast_hash < cursor_hash))
            )
        else:
            stmt = stmt.where(sort_time < cursor)
    stmt = stmt.order_by(sort_time.desc(), CuratedCast.cast_hash.desc()).limit(limit)

    result = await db.execute(stmt)
    return [(cast_hash, as_utc(value)) for cast_hash, value in result.all()]


async def _curators_by_cast(db: AsyncSession, hashes: List[str]) -> Dict[str, List[dict]]:
    result = await db.execute(
        select(CuratorCastCuration, User)
        .outerjoin(User, User.fid == CuratorCastCuration.curator_fid)
        .where(CuratorCastCuration.cast_hash.in_(hashes))
        .order_by(CuratorCastCuration.created_at.asc(), CuratorCastCuration.id.asc())
    )
    curators: Dict[str, List[dict]] = defaultdict(list)
    for curation, user in result.all():
        curated_at = as_utc(curation.created_at)
        curators[curation.cast_hash].append(
            {
                "fid": curation.curator_fid,
                "username": user.username if user else None,
                "display_name": user.display_name if user else None,
                "pfp_url": user.pfp_url if user else None,
                "curated_at": curated_at.isoformat() if curated_at else None,
            }
        )
    return curators


async def _viewer_context(db: AsyncSession, viewer_fid: int, hashes: List[str]) -> Dict[str, dict]:
    result = await db.execute(
        select(CuratedCastInteraction.target_cast_hash, CuratedCastInteraction.interaction_type).where(
            CuratedCastInteraction.user_fid == viewer_fid,
            CuratedCastInteraction.target_cast_hash.in_(hashes),
            CuratedCastInteraction.interaction_type.in_(("like", "recast")),
        )
    )
    context = {h: {"liked": False, "recasted": False} for h in hashes}
    for target, kind in result.all():
        context[target]["liked" if kind == "like" else "recasted"] = True
    return context


async def resolve_quote_parents(db: AsyncSession, casts: List[CastData]) -> Dict[str, CastData]:
    """Parents of quote casts that reply elsewhere.

    Stored rows are used first; the rest are fetched from Neynar in parallel
    and kept as placeholder replies. Failures are logged and left out.
    """
    needed = {cast.parent_hash for cast in casts if cast.replies_elsewhere}
    if not needed:
        return {}

    parents = await stored_casts(db, needed)
    missing = sorted(needed - set(parents))
    if not missing:
        return parents

    results = await asyncio.gather(
        *(neynar.lookup_cast(parent_hash) for parent_hash in missing), return_exceptions=True
    )
    fetched = []
    for parent_hash, outcome in zip(missing, results):
        if isinstance(outcome, Exception):
            logger.warning(f"Could not resolve parent cast {parent_hash}: {outcome}")
        elif outcome is None:
            logger.warning(f"Parent cast {parent_hash} not found")
        else:
            parents[parent_hash] = outcome
            fetched.append(outcome)

    if fetched:
        try:
            await store_replies(
                db,
                [
                    reply_row(parent, PARENT_CAST_PLACEHOLDER_HASH, parent.parent_hash, 0)
                    for parent in fetched
                ],
            )
        except Exception as e:
            logger.warning(f"Could not persist {len(fetched)} parent cast(s): {e}")
    return parents


async def assemble_feed(
    db: AsyncSession,
    limit: int,
    sort_by: str = SORT_RECENT_REPLY,
    cursor: Optional[datetime] = None,
    cursor_hash: Optional[str] = None,
    viewer_fid: Optional[int] = None,
    curator_fids: Optional[List[int]] = None,
) -> Dict[str, Any]:
    cache_key = make_key(
        "feed",
        {
            "limit": limit,
            "sort_by": sort_by,
            "cursor": cursor.isoformat() if cursor else None,
            "cursor_hash": cursor_hash,
            "viewer_fid": viewer_fid,
            "curator_fids": curator_fids,
        },
    )
    cached = feed_cache.get(cache_key)
    if cached is not None:
        return cached

    fids = curator_fids if curator_fids is not None else await role_curator_fids(db)
    if not fids:
        return {"casts": [], "next": {"cursor": None}}

    # ── Phase one: rank ──
    page = await select_page(db, fids, sort_by, limit, cursor, cursor_hash)
    hashes = [cast_hash for cast_hash, _ in page]

    # ── Phase two: payloads for this page only ──
    rows: Dict[str, CuratedCast] = {}
    if hashes:
        result = await db.execute(select(CuratedCast).where(CuratedCast.cast_hash.in_(hashes)))
        rows = {row.cast_hash: row for row in result.scalars().all()}

    curators = await _curators_by_cast(db, hashes) if hashes else {}
    viewer = await _viewer_context(db, viewer_fid, hashes) if viewer_fid and hashes else {}
    payloads = [rows[h].cast_data for h in hashes if h in rows and rows[h].cast_data is not None]
    parents = await resolve_quote_parents(db, payloads)

    casts: List[Dict[str, Any]] = []
    for cast_hash, sort_time in page:
        row = rows.get(cast_hash)
        if row is None or row.cast_data is None:
            logger.warning(f"Skipping curated cast {cast_hash} without a usable payload")
            continue
        cast = row.cast_data
        item = cast.to_payload()
        cast_curators = curators.get(cast_hash, [])
        item["curator"] = cast_curators[0] if cast_curators else None
        item["curators"] = cast_curators
        item["_sort_time"] = sort_time.isoformat() if sort_time else None
        if cast.replies_elsewhere and cast.parent_hash in parents:
            item["parent_cast"] = parents[cast.parent_hash].to_payload()
        if viewer:
            item["viewer_context"] = viewer[cast_hash]
        casts.append(item)

    next_cursor = None
    if len(page) == limit and page[-1][1] is not None:
        last_hash, last_time = page[-1]
        next_cursor = format_cursor(last_time, last_hash)

    response = {"casts": casts, "next": {"cursor": next_cursor}}
    feed_cache.set(cache_key, response)
    return response
