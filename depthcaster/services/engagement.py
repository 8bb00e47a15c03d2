"""
Engagement, quality and metadata helpers for cast payloads.

Everything here is a pure function over ``CastData`` so the feed, the
conversation builder and the ingestion paths score casts the same way.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from depthcaster.database import as_utc
from depthcaster.schemas.cast import CastData

# ── Weights ──
REPLY_WEIGHT = 4
RECAST_WEIGHT = 2
LIKE_WEIGHT = 1

# ── Quality threshold ──
MIN_USER_SCORE_THRESHOLD = 0.7
MIN_CAST_LENGTH_THRESHOLD = 500
HIDDEN_BOTS = ("betonbangers", "deepbot", "bracky", "hunttown.eth")


def engagement_score(cast: CastData) -> int:
    return (
        cast.replies_count * REPLY_WEIGHT
        + cast.recasts_count * RECAST_WEIGHT
        + cast.likes_count * LIKE_WEIGHT
    )


def quality_score(cast: CastData) -> float:
    """Author score (0-1) scaled to 100 plus up to 100 points for length."""
    user_score = cast.author.score or 0
    return user_score * 100 + min(len(cast.body) / 5, 100)


def is_bot_cast(cast: CastData) -> bool:
    """True when the author or anyone mentioned is a hidden bot account."""
    if cast.author.username and cast.author.username.lower() in HIDDEN_BOTS:
        return True
    for profile in cast.mentioned_profiles:
        username = profile.get("username") if isinstance(profile, dict) else None
        if username and username.lower() in HIDDEN_BOTS:
            return True
    return False


def meets_quality_threshold(cast: CastData) -> bool:
    # Bots fail regardless of score or length
    if is_bot_cast(cast):
        return False
    if cast.author.score is not None and cast.author.score > MIN_USER_SCORE_THRESHOLD:
        return True
    return len(cast.body) > MIN_CAST_LENGTH_THRESHOLD


def cast_timestamp(cast: CastData) -> Optional[datetime]:
    return as_utc(cast.timestamp)


def cast_metadata(cast: CastData) -> Dict[str, Any]:
    """Column values denormalized from the payload onto cast rows."""
    text = cast.text or None
    return {
        "cast_text": text,
        "cast_text_length": len(text) if text else 0,
        "author_fid": cast.author.fid,
        "likes_count": cast.likes_count,
        "recasts_count": cast.recasts_count,
        "replies_count": cast.replies_count,
        "engagement_score": engagement_score(cast),
    }
