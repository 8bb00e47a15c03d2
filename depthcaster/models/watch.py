"""Directed watch edge: watcher → watched."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from depthcaster.database import Base


class UserWatch(Base):
    __tablename__ = "user_watches"
    __table_args__ = (UniqueConstraint("watcher_fid", "watched_fid", name="watcher_watched_unique"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    watcher_fid: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.fid"), nullable=False, index=True
    )
    watched_fid: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.fid"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
