"""Keep ``users`` rows in step with the authors we store casts for."""

import logging
from typing import Dict, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from depthcaster.database import upsert
from depthcaster.models.user import User
from depthcaster.schemas.cast import CastData

logger = logging.getLogger(__name__)


async def ensure_user(db: AsyncSession, fid: int) -> None:
    """Insert a bare user row so foreign keys to ``fid`` hold."""
    stmt = upsert(db, User).values(fid=fid).on_conflict_do_nothing(index_elements=["fid"])
    await db.execute(stmt)


async def upsert_authors(db: AsyncSession, casts: Iterable[CastData]) -> int:
    """Create or refresh the author of every cast. Returns the number of authors touched."""
    authors: Dict[int, dict] = {}
    for cast in casts:
        fid = cast.author.fid
        if fid is None or fid in authors:
            continue
        authors[fid] = {
            "fid": fid,
            "username": cast.author.username,
            "display_name": cast.author.display_name,
            "pfp_url": cast.author.pfp_url,
        }

    for values in authors.values():
        stmt = upsert(db, User).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["fid"],
            set_={
                "username": stmt.excluded.username,
                "display_name": stmt.excluded.display_name,
                "pfp_url": stmt.excluded.pfp_url,
            },
        )
        await db.execute(stmt)

    if authors:
        logger.debug(f"Upserted {len(authors)} cast author(s)")
    return len(authors)
