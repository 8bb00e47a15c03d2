"""Poll models — a poll hangs off a curated cast."""

import enum
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from depthcaster.database import Base


class PollType(str, enum.Enum):
    RANKING = "ranking"
    CHOICE = "choice"
    DISTRIBUTION = "distribution"


class Poll(Base):
    __tablename__ = "polls"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    cast_hash: Mapped[str] = mapped_column(
        String(66), ForeignKey("curated_casts.cast_hash", ondelete="CASCADE"),
        unique=True, nullable=False,
    )
    slug: Mapped[Optional[str]] = mapped_column(String(120), unique=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    poll_type: Mapped[str] = mapped_column(String(20), default=PollType.RANKING.value, nullable=False)
    # Choice labels offered for every option of a "choice" poll
    choices: Mapped[Optional[List[str]]] = mapped_column(JSON)
    created_by: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.fid"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    options: Mapped[List["PollOption"]] = relationship(
        "PollOption",
        back_populates="poll",
        cascade="all, delete-orphan",
        order_by="PollOption.order",
    )


class PollOption(Base):
    __tablename__ = "poll_options"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    poll_id: Mapped[int] = mapped_column(
        ForeignKey("polls.id", ondelete="CASCADE"), nullable=False, index=True
    )
    option_text: Mapped[str] = mapped_column(Text, nullable=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    poll: Mapped["Poll"] = relationship("Poll", back_populates="options")


class PollResponse(Base):
    __tablename__ = "poll_responses"
    __table_args__ = (UniqueConstraint("poll_id", "user_fid", name="poll_responses_poll_user_unique"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    poll_id: Mapped[int] = mapped_column(
        ForeignKey("polls.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_fid: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.fid", ondelete="CASCADE"), nullable=False, index=True
    )

    # ── Exactly one is set, depending on the poll type ──
    rankings: Mapped[Optional[List[int]]] = mapped_column(JSON)
    choices: Mapped[Optional[Dict[str, str]]] = mapped_column(JSON)
    allocations: Mapped[Optional[Dict[str, int]]] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
