"""Curated casts and the rows that hang off them."""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from depthcaster.database import Base, utcnow
from depthcaster.models.types import CastPayload
from depthcaster.schemas.cast import CastData

# Stored parents of quote casts live under this curated hash so they never
# show up as thread members.
PARENT_CAST_PLACEHOLDER_HASH = "0x0000000000000000000000000000000000000000"


class CastMetadataMixin:
    """Columns extracted from the cast payload for filtering and sorting."""

    cast_text: Mapped[Optional[str]] = mapped_column(Text)
    cast_text_length: Mapped[int] = mapped_column(Integer, default=0)
    author_fid: Mapped[Optional[int]] = mapped_column(BigInteger, index=True)
    likes_count: Mapped[int] = mapped_column(Integer, default=0)
    recasts_count: Mapped[int] = mapped_column(Integer, default=0)
    replies_count: Mapped[int] = mapped_column(Integer, default=0)
    engagement_score: Mapped[int] = mapped_column(Integer, default=0)


class CuratedCast(CastMetadataMixin, Base):
    __tablename__ = "curated_casts"

    id: Mapped[int] = mapped_column(primary_key=True)
    cast_hash: Mapped[str] = mapped_column(String(66), unique=True, nullable=False)
    cast_data: Mapped[Optional[CastData]] = mapped_column(CastPayload, nullable=False)
    cast_created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), index=True
    )
    curator_fid: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.fid"), index=True
    )
    parent_hash: Mapped[Optional[str]] = mapped_column(String(66), index=True)

    replies_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    conversation_fetched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True
    )


class CuratorCastCuration(Base):
    __tablename__ = "curator_cast_curations"
    __table_args__ = (
        UniqueConstraint("cast_hash", "curator_fid", name="cast_hash_curator_unique"),
        Index("curator_cast_curations_cast_hash_created_at_idx", "cast_hash", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    cast_hash: Mapped[str] = mapped_column(
        String(66), ForeignKey("curated_casts.cast_hash", ondelete="CASCADE"), nullable=False
    )
    curator_fid: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.fid"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


class CastTag(Base):
    __tablename__ = "cast_tags"
    __table_args__ = (UniqueConstraint("cast_hash", "tag", name="cast_hash_tag_unique"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    cast_hash: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    tag: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    admin_fid: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.fid"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class CuratedCastInteraction(Base):
    __tablename__ = "curated_cast_interactions"
    __table_args__ = (
        UniqueConstraint(
            "curated_cast_hash",
            "target_cast_hash",
            "interaction_type",
            "user_fid",
            name="curated_cast_target_type_user_unique",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    curated_cast_hash: Mapped[str] = mapped_column(
        String(66), ForeignKey("curated_casts.cast_hash", ondelete="CASCADE"), nullable=False
    )
    # The curated cast itself or any reply in its thread
    target_cast_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    interaction_type: Mapped[str] = mapped_column(String(10), nullable=False)
    user_fid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
