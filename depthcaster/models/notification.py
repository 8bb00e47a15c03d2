"""Notification model — in-app notifications for watched users' casts."""

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from depthcaster.database import Base, utcnow
from depthcaster.models.types import CastPayload
from depthcaster.schemas.cast import CastData


class UserNotification(Base):
    __tablename__ = "user_notifications"
    __table_args__ = (
        UniqueConstraint("user_fid", "cast_hash", name="user_fid_cast_hash_unique"),
        Index("user_fid_is_read_created_at_idx", "user_fid", "is_read", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_fid: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.fid", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    cast_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    cast_data: Mapped[Optional[CastData]] = mapped_column(CastPayload, nullable=False)
    author_fid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
