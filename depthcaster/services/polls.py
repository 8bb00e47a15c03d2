"""
Poll service — creation, response validation and result collation.

Validation helpers raise ``ValueError`` with a user-facing message; the
router turns those into 400s.
"""

import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from depthcaster.database import as_utc, upsert, utcnow
from depthcaster.models.poll import Poll, PollOption, PollResponse, PollType
from depthcaster.models.user import User
from depthcaster.schemas.poll import PollOptionIn
from depthcaster.services.users import ensure_user

logger = logging.getLogger(__name__)

DISTRIBUTION_TOTAL = 7
POLL_TYPES = tuple(t.value for t in PollType)


def _iso(value) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


# ── Lookups ──
async def get_poll(db: AsyncSession, key: str) -> Optional[Poll]:
    """Find a poll by cast hash or slug."""
    result = await db.execute(
        select(Poll)
        .options(selectinload(Poll.options))
        .where(or_(Poll.cast_hash == key, Poll.slug == key))
        .order_by(Poll.id)
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_response(db: AsyncSession, poll_id: int, user_fid: int) -> Optional[PollResponse]:
    result = await db.execute(
        select(PollResponse).where(PollResponse.poll_id == poll_id, PollResponse.user_fid == user_fid)
    )
    return result.scalar_one_or_none()


def poll_to_dict(poll: Poll) -> Dict[str, Any]:
    return {
        "id": poll.id,
        "cast_hash": poll.cast_hash,
        "slug": poll.slug,
        "question": poll.question,
        "poll_type": poll.poll_type,
        "choices": poll.choices or [],
        "created_by": poll.created_by,
        "created_at": _iso(poll.created_at),
        "updated_at": _iso(poll.updated_at),
        "options": [
            {"id": option.id, "option_text": option.option_text, "order": option.order}
            for option in poll.options
        ],
    }


def response_to_dict(response: PollResponse) -> Dict[str, Any]:
    return {
        "rankings": response.rankings,
        "choices": response.choices,
        "allocations": response.allocations,
        "created_at": _iso(response.created_at),
        "updated_at": _iso(response.updated_at),
    }


# ── Create / replace ──
def validate_poll_definition(
    poll_type: str, options: List[PollOptionIn], choices: Optional[List[str]]
) -> List[str]:
    """Return the cleaned choice labels."""
    if poll_type not in POLL_TYPES:
        raise ValueError(f"poll_type must be one of: {', '.join(POLL_TYPES)}")
    texts = [option.text.strip() for option in options]
    if len(texts) < 2 or not all(texts):
        raise ValueError("At least 2 non-empty options are required")
    labels = [c.strip() for c in (choices or []) if c and c.strip()]
    if poll_type == PollType.CHOICE.value and not labels:
        raise ValueError("Choice polls need at least one choice")
    return labels


async def slug_taken(db: AsyncSession, slug: str, cast_hash: str) -> bool:
    result = await db.execute(select(Poll.id).where(Poll.slug == slug, Poll.cast_hash != cast_hash))
    return result.scalar_one_or_none() is not None


async def save_poll(
    db: AsyncSession,
    cast_hash: str,
    question: str,
    poll_type: str,
    options: List[PollOptionIn],
    choices: List[str],
    slug: Optional[str],
    created_by: int,
) -> Poll:
    """Create the poll for ``cast_hash`` or replace its definition and options."""
    await ensure_user(db, created_by)
    result = await db.execute(select(Poll).where(Poll.cast_hash == cast_hash))
    poll = result.scalar_one_or_none()
    if poll is None:
        poll = Poll(cast_hash=cast_hash, created_by=created_by)
        db.add(poll)
        logger.info(f"Creating {poll_type} poll for {cast_hash}")
    else:
        await db.execute(delete(PollOption).where(PollOption.poll_id == poll.id))
        logger.info(f"Replacing poll {poll.id} for {cast_hash}")

    poll.question = question.strip()
    poll.poll_type = poll_type
    poll.choices = choices if poll_type == PollType.CHOICE.value else None
    poll.slug = slug.strip() if slug and slug.strip() else None
    poll.updated_at = utcnow()
    await db.flush()

    ordered = sorted(enumerate(options), key=lambda pair: (pair[1].order or pair[0] + 1, pair[0]))
    for position, (_, option) in enumerate(ordered, start=1):
        db.add(PollOption(poll_id=poll.id, option_text=option.text.strip(), order=position))
    await db.flush()

    return await get_poll(db, cast_hash)


# ── Responses ──
def validate_response(
    poll: Poll,
    rankings: Optional[List[int]] = None,
    choices: Optional[Dict[str, str]] = None,
    allocations: Optional[Dict[str, int]] = None,
) -> Dict[str, Any]:
    """Check a response against the poll; returns the column values to store."""
    option_ids = {option.id for option in poll.options}

    if poll.poll_type == PollType.RANKING.value:
        if not rankings:
            raise ValueError("rankings are required for a ranking poll")
        if len(rankings) != len(option_ids) or set(rankings) != option_ids:
            raise ValueError("rankings must list every option exactly once")
        return {"rankings": list(rankings), "choices": None, "allocations": None}

    if poll.poll_type == PollType.CHOICE.value:
        if not choices:
            raise ValueError("choices are required for a choice poll")
        labels = set(poll.choices or [])
        cleaned: Dict[str, str] = {}
        for key, label in choices.items():
            if not str(key).isdigit() or int(key) not in option_ids:
                raise ValueError(f"Unknown option: {key}")
            if label not in labels:
                raise ValueError(f"Invalid choice: {label}")
            cleaned[str(int(key))] = label
        if set(map(int, cleaned)) != option_ids:
            raise ValueError("Every option needs a choice")
        return {"rankings": None, "choices": cleaned, "allocations": None}

    if not allocations:
        raise ValueError("allocations are required for a distribution poll")
    cleaned_alloc: Dict[str, int] = {}
    for key, votes in allocations.items():
        if not str(key).isdigit() or int(key) not in option_ids:
            raise ValueError(f"Unknown option: {key}")
        if isinstance(votes, bool) or not isinstance(votes, int) or votes < 0:
            raise ValueError("Allocations must be non-negative integers")
        cleaned_alloc[str(int(key))] = votes
    if sum(cleaned_alloc.values()) != DISTRIBUTION_TOTAL:
        raise ValueError(f"Allocations must add up to {DISTRIBUTION_TOTAL}")
    return {"rankings": None, "choices": None, "allocations": cleaned_alloc}


async def submit_response(db: AsyncSession, poll: Poll, user_fid: int, values: Dict[str, Any]) -> None:
    """One response per (poll, user); a resubmission replaces the previous one."""
    await ensure_user(db, user_fid)
    stmt = upsert(db, PollResponse).values(poll_id=poll.id, user_fid=user_fid, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["poll_id", "user_fid"],
        set_={
            "rankings": stmt.excluded.rankings,
            "choices": stmt.excluded.choices,
            "allocations": stmt.excluded.allocations,
            "updated_at": utcnow(),
        },
    )
    await db.execute(stmt)
    logger.info(f"FID {user_fid} responded to poll {poll.id}")


# ── Results ──
def collate_results(poll: Poll, responses: List[tuple]) -> Dict[str, Any]:
    """Aggregate ``(PollResponse, Optional[User])`` pairs for one poll."""
    options = list(poll.options)
    by_id = {option.id: option for option in options}
    respondents = []

    def who(response, user):
        return {
            "user_fid": response.user_fid,
            "username": user.username if user else None,
            "display_name": user.display_name if user else None,
            "pfp_url": user.pfp_url if user else None,
            "created_at": _iso(response.created_at),
        }

    if poll.poll_type == PollType.RANKING.value:
        ranks: Dict[int, List[int]] = {option.id: [] for option in options}
        for response, user in responses:
            ranking = response.rankings or []
            for position, option_id in enumerate(ranking, start=1):
                if option_id in ranks:
                    ranks[option_id].append(position)
            respondents.append(
                {
                    **who(response, user),
                    "rankings": [
                        {
                            "rank": position,
                            "option_id": option_id,
                            "option_text": by_id[option_id].option_text if option_id in by_id else "Unknown",
                        }
                        for position, option_id in enumerate(ranking, start=1)
                    ],
                }
            )
        results = []
        for option in options:
            option_ranks = ranks[option.id]
            total = sum(option_ranks)
            results.append(
                {
                    "option_id": option.id,
                    "option_text": option.option_text,
                    "average_rank": total / len(option_ranks) if option_ranks else 0,
                    "vote_count": len(option_ranks),
                    "total_rank": total,
                    "rankings": option_ranks,
                }
            )
        # Unvoted options go last
        results.sort(key=lambda r: (r["vote_count"] == 0, r["average_rank"]))

    elif poll.poll_type == PollType.CHOICE.value:
        results = []
        for option in options:
            counts: Counter = Counter()
            for response, _ in responses:
                label = (response.choices or {}).get(str(option.id))
                if label:
                    counts[label] += 1
            results.append(
                {
                    "option_id": option.id,
                    "option_text": option.option_text,
                    "choice_counts": dict(counts),
                    "total_votes": sum(counts.values()),
                }
            )
        for response, user in responses:
            picked = response.choices or {}
            respondents.append(
                {
                    **who(response, user),
                    "choices": [
                        {
                            "option_id": option.id,
                            "option_text": option.option_text,
                            "choice": picked.get(str(option.id), ""),
                        }
                        for option in options
                    ],
                }
            )

    else:
        results = []
        for option in options:
            votes = [
                (response.allocations or {}).get(str(option.id), 0) for response, _ in responses
            ]
            results.append(
                {
                    "option_id": option.id,
                    "option_text": option.option_text,
                    "total_votes": sum(votes),
                    "voter_count": sum(1 for v in votes if v > 0),
                }
            )
        results.sort(key=lambda r: r["total_votes"], reverse=True)
        for response, user in responses:
            allocated = response.allocations or {}
            respondents.append(
                {
                    **who(response, user),
                    "allocations": [
                        {
                            "option_id": option.id,
                            "option_text": option.option_text,
                            "votes": allocated.get(str(option.id), 0),
                        }
                        for option in options
                    ],
                }
            )

    return {
        "poll": poll_to_dict(poll),
        "results": results,
        "responses": respondents,
        "total_responses": len(responses),
    }


async def poll_results(db: AsyncSession, poll: Poll) -> Dict[str, Any]:
    result = await db.execute(
        select(PollResponse, User)
        .outerjoin(User, User.fid == PollResponse.user_fid)
        .where(PollResponse.poll_id == poll.id)
        .order_by(PollResponse.created_at.asc(), PollResponse.id.asc())
    )
    return collate_results(poll, list(result.all()))


async def list_polls(db: AsyncSession, sort_by: str = "created_at", sort_order: str = "desc") -> List[Dict[str, Any]]:
    option_counts = (
        select(PollOption.poll_id, func.count(PollOption.id).label("option_count"))
        .group_by(PollOption.poll_id)
        .subquery()
    )
    response_counts = (
        select(PollResponse.poll_id, func.count(PollResponse.id).label("response_count"))
        .group_by(PollResponse.poll_id)
        .subquery()
    )
    option_count = func.coalesce(option_counts.c.option_count, 0)
    response_count = func.coalesce(response_counts.c.response_count, 0)
    sort_columns = {
        "created_at": Poll.created_at,
        "updated_at": Poll.updated_at,
        "question": Poll.question,
        "response_count": response_count,
    }
    column = sort_columns.get(sort_by, Poll.created_at)
    order = column.asc() if sort_order == "asc" else column.desc()

    result = await db.execute(
        select(Poll, option_count, response_count)
        .outerjoin(option_counts, option_counts.c.poll_id == Poll.id)
        .outerjoin(response_counts, response_counts.c.poll_id == Poll.id)
        .order_by(order, Poll.id.desc())
    )
    return [
        {
            "id": poll.id,
            "cast_hash": poll.cast_hash,
            "slug": poll.slug,
            "question": poll.question,
            "poll_type": poll.poll_type,
            "created_by": poll.created_by,
            "created_at": _iso(poll.created_at),
            "updated_at": _iso(poll.updated_at),
            "option_count": options,
            "response_count": responses,
        }
        for poll, options, responses in result.all()
    ]
