"""
Conversation service — stores replies/quotes beneath curated casts and
rebuilds them into a nested tree.

The tree builder (``build_reply_tree``) is a pure function over loaded
``CastReply`` rows; the database and Neynar work lives in the async helpers
around it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from depthcaster.config import settings
from depthcaster.database import as_utc, upsert, utcnow
from depthcaster.models.cast_reply import CastReply
from depthcaster.models.curated_cast import PARENT_CAST_PLACEHOLDER_HASH, CuratedCast
from depthcaster.schemas.cast import CastData
from depthcaster.services import neynar
from depthcaster.services.engagement import (
    cast_metadata,
    cast_timestamp,
    engagement_score,
    meets_quality_threshold,
    quality_score,
)
from depthcaster.services.users import upsert_authors

logger = logging.getLogger(__name__)

SORT_NEWEST = "newest"
SORT_ENGAGEMENT = "engagement"
SORT_QUALITY = "quality"
SORT_CHRONOLOGICAL = "chronological"
SORT_MODES = (SORT_NEWEST, SORT_ENGAGEMENT, SORT_QUALITY, SORT_CHRONOLOGICAL)

ORPHAN_PROMOTE = "promote"
ORPHAN_DROP = "drop"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ═══════════════════════════════════════════════════════════════════════
#  Tree builder
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class ReplyNode:
    row: Any
    cast: CastData
    children: List["ReplyNode"] = field(default_factory=list)
    parent_cast: Optional[CastData] = None

    @property
    def hash(self) -> str:
        return self.row.reply_cast_hash

    @property
    def parent_hash(self) -> Optional[str]:
        return self.row.parent_cast_hash

    @property
    def created_at(self) -> datetime:
        return as_utc(self.row.cast_created_at) or cast_timestamp(self.cast) or _EPOCH

    def latest_activity(self) -> datetime:
        """Most recent timestamp anywhere in this subtree."""
        latest = self.created_at
        for child in self.children:
            child_latest = child.latest_activity()
            if child_latest > latest:
                latest = child_latest
        return latest

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> Dict[str, Any]:
        data = self.cast.to_payload()
        data.update(
            {
                "_reply_depth": self.row.reply_depth,
                "_parent_cast_hash": self.row.parent_cast_hash,
                "_is_quote_cast": self.row.is_quote_cast,
                "_root_cast_hash": self.row.root_cast_hash,
                "cast_created_at": self.created_at.isoformat(),
                "children": [child.to_dict() for child in self.children],
            }
        )
        if self.parent_cast is not None:
            data["parent_cast"] = self.parent_cast.to_payload()
        return data


def _normalize(cast_hash: str) -> str:
    return cast_hash.strip().lower()


def _root_sort(nodes: List[ReplyNode], sort_by: str) -> None:
    if sort_by == SORT_NEWEST:
        nodes.sort(key=lambda n: n.latest_activity(), reverse=True)
    elif sort_by == SORT_ENGAGEMENT:
        nodes.sort(key=lambda n: engagement_score(n.cast), reverse=True)
    elif sort_by == SORT_QUALITY:
        nodes.sort(key=lambda n: quality_score(n.cast), reverse=True)
    else:
        nodes.sort(key=lambda n: n.created_at)


def _sort_children(node: ReplyNode) -> None:
    node.children.sort(key=lambda n: n.created_at)
    for child in node.children:
        _sort_children(child)


def build_reply_tree(
    root_hash: str,
    rows: Sequence[Any],
    sort_by: str = SORT_CHRONOLOGICAL,
    orphan_policy: Optional[str] = None,
) -> List[ReplyNode]:
    """Nest flat reply rows under ``root_hash`` and order the top level.

    ``rows`` must already be in load order (depth, then the sort proxy
    column); equal sort keys keep that order.
    """
    orphan_policy = orphan_policy or settings.ORPHAN_REPLY_POLICY

    # 1. Usable rows only
    usable = [
        row for row in rows
        if row.curated_cast_hash != PARENT_CAST_PLACEHOLDER_HASH and row.cast_data is not None
    ]

    # 2. hash → node
    nodes: Dict[str, ReplyNode] = {}
    normalized: Dict[str, ReplyNode] = {}
    for row in usable:
        if row.reply_cast_hash in nodes:
            continue
        node = ReplyNode(row=row, cast=row.cast_data)
        nodes[row.reply_cast_hash] = node
        normalized.setdefault(_normalize(row.reply_cast_hash), node)

    # 3. Classify
    roots: List[ReplyNode] = []
    for node in nodes.values():
        parent_hash = node.parent_hash
        quotes_root = node.row.is_quote_cast and node.row.quoted_cast_hash == root_hash
        if not parent_hash or parent_hash == root_hash or quotes_root:
            roots.append(node)
            continue

        parent = nodes.get(parent_hash) or normalized.get(_normalize(parent_hash))
        if parent is not None and parent is not node:
            parent.children.append(node)
        elif orphan_policy == ORPHAN_DROP:
            logger.info(f"Dropping reply {node.hash}: parent {parent_hash} is not part of {root_hash}")
        else:
            logger.warning(f"Promoting reply {node.hash} to top level: parent {parent_hash} is not part of {root_hash}")
            roots.append(node)

    # 4. Order
    _root_sort(roots, sort_by)
    for node in roots:
        _sort_children(node)
    return roots


def quote_parents_to_resolve(root_hash: str, roots: Iterable[ReplyNode]) -> Set[str]:
    """Parents of quote casts that reply somewhere outside this tree."""
    in_tree = {n.hash for root in roots for n in root.walk()}
    needed: Set[str] = set()
    for root in roots:
        for node in root.walk():
            parent_hash = node.parent_hash
            if not node.row.is_quote_cast or not parent_hash or parent_hash == root_hash:
                continue
            if parent_hash in node.cast.quoted_cast_hashes() or parent_hash in in_tree:
                continue
            needed.add(parent_hash)
    return needed


def attach_parent_casts(roots: Iterable[ReplyNode], parents: Dict[str, CastData]) -> None:
    for root in roots:
        for node in root.walk():
            if node.row.is_quote_cast and node.parent_hash in parents:
                node.parent_cast = parents[node.parent_hash]


def count_nodes(roots: Iterable[ReplyNode]) -> int:
    return sum(1 for root in roots for _ in root.walk())


# ═══════════════════════════════════════════════════════════════════════
#  Reads
# ═══════════════════════════════════════════════════════════════════════

async def load_reply_rows(db: AsyncSession, root_hash: str, sort_by: str) -> List[CastReply]:
    proxy = CastReply.cast_created_at.desc() if sort_by == SORT_NEWEST else CastReply.created_at.asc()
    result = await db.execute(
        select(CastReply)
        .where(
            or_(
                CastReply.curated_cast_hash == root_hash,
                CastReply.quoted_cast_hash == root_hash,
            )
        )
        .order_by(CastReply.reply_depth.asc(), proxy, CastReply.reply_cast_hash.asc())
    )
    return list(result.scalars().all())


async def stored_casts(db: AsyncSession, hashes: Iterable[str]) -> Dict[str, CastData]:
    """Look up payloads for ``hashes`` among stored replies, then curated casts."""
    hashes = list(set(hashes))
    if not hashes:
        return {}

    found: Dict[str, CastData] = {}
    result = await db.execute(
        select(CastReply.reply_cast_hash, CastReply.cast_data).where(CastReply.reply_cast_hash.in_(hashes))
    )
    for cast_hash, cast in result.all():
        if cast is not None:
            found[cast_hash] = cast

    missing = [h for h in hashes if h not in found]
    if missing:
        result = await db.execute(
            select(CuratedCast.cast_hash, CuratedCast.cast_data).where(CuratedCast.cast_hash.in_(missing))
        )
        for cast_hash, cast in result.all():
            if cast is not None:
                found[cast_hash] = cast
    return found


async def get_conversation(db: AsyncSession, cast_hash: str, sort_by: str) -> Optional[Dict[str, Any]]:
    """Nested conversation for a curated cast, or ``None`` if it is not curated."""
    result = await db.execute(select(CuratedCast).where(CuratedCast.cast_hash == cast_hash))
    curated = result.scalar_one_or_none()
    if curated is None:
        return None

    rows = await load_reply_rows(db, cast_hash, sort_by)
    roots = build_reply_tree(cast_hash, rows, sort_by)

    needed = quote_parents_to_resolve(cast_hash, roots)
    if needed:
        attach_parent_casts(roots, await stored_casts(db, needed))

    fetched_at = as_utc(curated.conversation_fetched_at)
    return {
        "root_cast": curated.cast_data.to_payload() if curated.cast_data else None,
        "replies": [node.to_dict() for node in roots],
        "total_replies": count_nodes(roots),
        "conversation_fetched_at": fetched_at.isoformat() if fetched_at else None,
    }


# ═══════════════════════════════════════════════════════════════════════
#  Writes
# ═══════════════════════════════════════════════════════════════════════

def reply_row(
    cast: CastData,
    curated_cast_hash: str,
    parent_cast_hash: Optional[str],
    depth: int,
    root_cast_hash: Optional[str] = None,
    quoted_cast_hash: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "curated_cast_hash": curated_cast_hash,
        "reply_cast_hash": cast.hash,
        "cast_data": cast,
        "cast_created_at": cast_timestamp(cast),
        "parent_cast_hash": parent_cast_hash,
        "root_cast_hash": root_cast_hash or curated_cast_hash,
        "reply_depth": depth,
        "is_quote_cast": quoted_cast_hash is not None,
        "quoted_cast_hash": quoted_cast_hash,
        **cast_metadata(cast),
    }


_UPSERT_COLUMNS = (
    "curated_cast_hash",
    "cast_data",
    "cast_created_at",
    "parent_cast_hash",
    "root_cast_hash",
    "reply_depth",
    "is_quote_cast",
    "quoted_cast_hash",
    "cast_text",
    "cast_text_length",
    "author_fid",
    "likes_count",
    "recasts_count",
    "replies_count",
    "engagement_score",
)


async def store_replies(db: AsyncSession, rows: List[Dict[str, Any]]) -> int:
    """Upsert reply rows on ``reply_cast_hash``; the last writer wins."""
    if not rows:
        return 0
    await upsert_authors(db, [row["cast_data"] for row in rows])
    for values in rows:
        stmt = upsert(db, CastReply).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["reply_cast_hash"],
            set_={name: getattr(stmt.excluded, name) for name in _UPSERT_COLUMNS},
        )
        await db.execute(stmt)
    return len(rows)


def _strip_replies(raw: dict) -> dict:
    return {key: value for key, value in raw.items() if key != "direct_replies"}


def collect_replies(
    raw_cast: dict,
    depth: int,
    max_depth: int,
    seen: Set[str],
    out: List[tuple],
) -> None:
    """Depth-first walk of ``direct_replies`` keeping casts above the quality bar.

    Appends ``(cast, depth, parent_hash)`` tuples to ``out``. Replies below
    the bar are not descended into.
    """
    if depth > max_depth:
        return
    for raw_reply in raw_cast.get("direct_replies") or []:
        if not isinstance(raw_reply, dict) or not raw_reply.get("hash") or raw_reply["hash"] in seen:
            continue
        seen.add(raw_reply["hash"])

        cast = CastData.parse(_strip_replies(raw_reply))
        if cast is None:
            continue
        if not meets_quality_threshold(cast):
            logger.debug(
                f"Reply {cast.hash} below quality threshold "
                f"(score: {cast.author.score}, length: {len(cast.body)})"
            )
            continue

        out.append((cast, depth, cast.parent_hash or raw_cast.get("hash")))
        collect_replies(raw_reply, depth + 1, max_depth, seen, out)


async def fetch_and_store_conversation(
    db: AsyncSession,
    cast_hash: str,
    max_depth: Optional[int] = None,
    max_replies: Optional[int] = None,
) -> Dict[str, int]:
    """Pull a curated cast's conversation and quotes from Neynar and store them."""
    max_depth = max_depth or settings.CONVERSATION_MAX_DEPTH
    max_replies = max_replies or settings.CONVERSATION_MAX_REPLIES

    raw_root = await neynar.lookup_conversation(cast_hash, max_depth)
    if not raw_root:
        logger.info(f"No conversation found for {cast_hash}")
        return {"stored": 0, "total": 0, "quotes_stored": 0, "quote_replies_stored": 0}

    # ── Direct thread ──
    collected: List[tuple] = []
    collect_replies(raw_root, 1, max_depth, set(), collected)
    rows = [
        reply_row(cast, cast_hash, parent_hash, depth)
        for cast, depth, parent_hash in collected[:max_replies]
    ]
    stored = await store_replies(db, rows)
    logger.info(f"Stored {stored} of {len(collected)} quality replies for {cast_hash}")

    # ── Quote casts and their replies ──
    quotes_stored = 0
    quote_replies_stored = 0
    try:
        raw_quotes = await neynar.fetch_quotes(cast_hash)
    except neynar.NeynarError as e:
        logger.warning(f"Could not fetch quotes for {cast_hash}: {e}")
        raw_quotes = []

    quotes = [q for q in (CastData.parse(_strip_replies(r)) for r in raw_quotes if isinstance(r, dict)) if q]
    quality_quotes = [q for q in quotes if meets_quality_threshold(q)]
    quotes_stored = await store_replies(
        db,
        [reply_row(q, cast_hash, q.parent_hash, 0, quoted_cast_hash=cast_hash) for q in quality_quotes],
    )

    for quote in quality_quotes:
        try:
            raw_quote_root = await neynar.lookup_conversation(quote.hash, max_depth)
        except neynar.NeynarError as e:
            logger.warning(f"Skipping replies to quote {quote.hash}: {e}")
            continue
        if not raw_quote_root:
            continue
        quote_collected: List[tuple] = []
        collect_replies(raw_quote_root, 1, max_depth, set(), quote_collected)
        quote_replies_stored += await store_replies(
            db,
            [
                reply_row(cast, cast_hash, parent_hash, depth)
                for cast, depth, parent_hash in quote_collected[:max_replies]
            ],
        )

    # ── Refresh the root snapshot ──
    now = utcnow()
    values: Dict[str, Any] = {"conversation_fetched_at": now, "replies_updated_at": now}
    root_cast = CastData.parse(_strip_replies(raw_root))
    if root_cast is not None and root_cast.hash == cast_hash:
        values.update(cast_data=root_cast, **cast_metadata(root_cast))
    await db.execute(update(CuratedCast).where(CuratedCast.cast_hash == cast_hash).values(**values))

    return {
        "stored": stored,
        "total": len(collected),
        "quotes_stored": quotes_stored,
        "quote_replies_stored": quote_replies_stored,
    }


async def find_thread_for_parent(db: AsyncSession, parent_hash: str) -> Optional[tuple]:
    """Return ``(curated_cast_hash, depth)`` for a reply to ``parent_hash``, if tracked."""
    result = await db.execute(
        select(CuratedCast.cast_hash).where(
            CuratedCast.cast_hash == parent_hash,
            CuratedCast.cast_hash != PARENT_CAST_PLACEHOLDER_HASH,
        )
    )
    if result.scalar_one_or_none():
        return parent_hash, 1

    result = await db.execute(
        select(CastReply.curated_cast_hash, CastReply.reply_depth).where(
            CastReply.reply_cast_hash == parent_hash,
            CastReply.curated_cast_hash != PARENT_CAST_PLACEHOLDER_HASH,
        )
    )
    row = result.first()
    if row is None:
        return None
    return row.curated_cast_hash, row.reply_depth + 1


async def store_thread_reply(db: AsyncSession, cast: CastData) -> Optional[str]:
    """Record ``cast`` under the curated thread its parent belongs to.

    Returns the curated cast hash, or ``None`` when the parent is not tracked.
    """
    if not cast.parent_hash:
        return None
    thread = await find_thread_for_parent(db, cast.parent_hash)
    if thread is None:
        return None
    curated_hash, depth = thread
    await store_replies(db, [reply_row(cast, curated_hash, cast.parent_hash, depth)])
    logger.info(f"Recorded reply {cast.hash} under curated cast {curated_hash} (depth {depth})")
    return curated_hash


async def store_quote(db: AsyncSession, cast: CastData, curated_hash: str) -> None:
    await store_replies(
        db, [reply_row(cast, curated_hash, cast.parent_hash, 0, quoted_cast_hash=curated_hash)]
    )
    logger.info(f"Recorded quote {cast.hash} of curated cast {curated_hash}")
