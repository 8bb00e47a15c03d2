"""Flat reply / quote rows beneath a curated cast."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from depthcaster.database import Base, utcnow
from depthcaster.models.curated_cast import CastMetadataMixin
from depthcaster.models.types import CastPayload
from depthcaster.schemas.cast import CastData


class CastReply(CastMetadataMixin, Base):
    __tablename__ = "cast_replies"
    __table_args__ = (
        Index("cast_replies_curated_cast_hash_reply_depth_idx", "curated_cast_hash", "reply_depth"),
        Index("cast_replies_curated_cast_hash_cast_created_at_idx", "curated_cast_hash", "cast_created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    curated_cast_hash: Mapped[str] = mapped_column(
        String(66), ForeignKey("curated_casts.cast_hash", ondelete="CASCADE"), nullable=False
    )
    reply_cast_hash: Mapped[str] = mapped_column(String(66), unique=True, nullable=False)
    cast_data: Mapped[Optional[CastData]] = mapped_column(CastPayload, nullable=False)
    cast_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    parent_cast_hash: Mapped[Optional[str]] = mapped_column(String(66), index=True)
    root_cast_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    reply_depth: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_quote_cast: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    quoted_cast_hash: Mapped[Optional[str]] = mapped_column(String(66), index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
