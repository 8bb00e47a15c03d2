"""Registered Neynar webhooks and their signing secrets."""

import enum
import json
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from depthcaster.database import Base


class WebhookType(str, enum.Enum):
    USER_WATCH = "user-watch"
    CURATED_REPLY = "curated-reply"
    CURATED_QUOTE = "curated-quote"
    CURATED_REACTION = "curated-reaction"


class Webhook(Base):
    __tablename__ = "webhooks"

    id: Mapped[int] = mapped_column(primary_key=True)
    neynar_webhook_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    config: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    secret: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # ── Secret helper ──
    @property
    def secret_value(self) -> Optional[str]:
        """Secrets are stored either plain or as ``{"value": "..."}``."""
        if not self.secret:
            return None
        try:
            parsed = json.loads(self.secret)
        except (json.JSONDecodeError, TypeError):
            return self.secret
        if isinstance(parsed, dict) and parsed.get("value"):
            return parsed["value"]
        return self.secret
