"""Cast payload value object.

Neynar returns loosely-shaped cast JSON. Everything that is persisted or read
back goes through ``CastData`` so the rest of the code can rely on typed
attributes instead of probing dictionaries.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class CastAuthor(BaseModel):
    model_config = ConfigDict(extra="allow")

    fid: Optional[int] = None
    username: Optional[str] = None
    display_name: Optional[str] = None
    pfp_url: Optional[str] = None
    score: Optional[float] = None


class CastReactions(BaseModel):
    model_config = ConfigDict(extra="allow")

    likes_count: Optional[int] = None
    recasts_count: Optional[int] = None
    likes: Optional[List[Any]] = None
    recasts: Optional[List[Any]] = None


class CastReplyCount(BaseModel):
    model_config = ConfigDict(extra="allow")

    count: int = 0


class CastData(BaseModel):
    """A cast as returned by Neynar, with unknown fields preserved."""

    model_config = ConfigDict(extra="allow")

    hash: str
    parent_hash: Optional[str] = None
    thread_hash: Optional[str] = None
    text: Optional[str] = None
    timestamp: Optional[datetime] = None
    author: CastAuthor = Field(default_factory=CastAuthor)
    reactions: CastReactions = Field(default_factory=CastReactions)
    replies: CastReplyCount = Field(default_factory=CastReplyCount)
    embeds: List[Any] = Field(default_factory=list)
    mentioned_profiles: List[Any] = Field(default_factory=list)

    # ── Derived values ──
    @property
    def body(self) -> str:
        return self.text or ""

    @property
    def likes_count(self) -> int:
        if self.reactions.likes_count is not None:
            return self.reactions.likes_count
        return len(self.reactions.likes or [])

    @property
    def recasts_count(self) -> int:
        if self.reactions.recasts_count is not None:
            return self.reactions.recasts_count
        return len(self.reactions.recasts or [])

    @property
    def replies_count(self) -> int:
        return self.replies.count or 0

    def quoted_cast_hashes(self) -> List[str]:
        """Hashes of casts embedded in this one."""
        hashes = []
        for embed in self.embeds:
            if not isinstance(embed, dict):
                continue
            cast_id = embed.get("cast_id")
            cast = embed.get("cast")
            if isinstance(cast_id, dict) and cast_id.get("hash"):
                hashes.append(cast_id["hash"])
            elif isinstance(cast, dict) and cast.get("hash"):
                hashes.append(cast["hash"])
        return hashes

    @property
    def is_quote_cast(self) -> bool:
        return bool(self.quoted_cast_hashes())

    @property
    def replies_elsewhere(self) -> bool:
        """True for a quote cast that is also a reply to some other cast."""
        return (
            self.is_quote_cast
            and bool(self.parent_hash)
            and self.parent_hash not in self.quoted_cast_hashes()
        )

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    # ── Storage boundary ──
    @classmethod
    def parse(cls, raw: Any) -> Optional["CastData"]:
        """Decode a stored or received payload; ``None`` when it is unusable."""
        if raw is None:
            return None
        if isinstance(raw, CastData):
            return raw
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.warning(f"Skipping undecodable cast payload: {e}")
                return None
        if not isinstance(raw, dict):
            logger.warning(f"Skipping cast payload of type {type(raw).__name__}")
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Skipping invalid cast payload {raw.get('hash')}: {e.error_count()} error(s)")
            return None
