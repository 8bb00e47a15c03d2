"""
Inbound Neynar webhooks: signature verification and event dispatch.
"""

import hashlib
import hmac
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from depthcaster.config import settings
from depthcaster.models.curated_cast import PARENT_CAST_PLACEHOLDER_HASH, CuratedCast
from depthcaster.models.webhook import Webhook, WebhookType
from depthcaster.schemas.cast import CastData
from depthcaster.services import conversation, curation, notifications
from depthcaster.services.cache import feed_cache
from depthcaster.services.engagement import meets_quality_threshold

logger = logging.getLogger(__name__)

CAST_CREATED = "cast.created"
REACTION_CREATED = "reaction.created"
REACTION_DELETED = "reaction.deleted"

# Neynar reaction_type → interaction type
REACTION_TYPES = {1: "like", 2: "recast", "like": "like", "recast": "recast"}


class InvalidSignature(Exception):
    pass


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Check a hex HMAC of ``body`` (SHA-512, or SHA-256) in constant time."""
    if not signature or not secret:
        return False
    received = signature.strip().lower()
    key = secret.encode("utf-8")

    expected_512 = hmac.new(key, body, hashlib.sha512).hexdigest()
    if hmac.compare_digest(expected_512, received):
        return True

    expected_256 = hmac.new(key, body, hashlib.sha256).hexdigest()
    if hmac.compare_digest(expected_256, received):
        return True
    # 128-char signatures are also tried as a truncated SHA-256
    if len(received) == 128 and hmac.compare_digest(expected_256, received[:64]):
        return True
    return False


async def load_secrets(db: AsyncSession) -> List[Tuple[str, Optional[str]]]:
    """``(secret, webhook_type)`` pairs to try, stored ones first."""
    result = await db.execute(select(Webhook).order_by(Webhook.id))
    secrets = [(w.secret_value, w.type) for w in result.scalars().all() if w.secret_value]
    if not secrets and settings.WEBHOOK_SECRET:
        secrets = [(settings.WEBHOOK_SECRET, None)]
    return secrets


async def authenticate(db: AsyncSession, body: bytes, signature: Optional[str]) -> Optional[str]:
    """Verify the request and return the webhook type tag of the matching secret.

    Returns ``None`` when no secret is configured (verification skipped) or
    when the matching secret has no type. Raises ``InvalidSignature``.
    """
    secrets = await load_secrets(db)
    if not secrets:
        logger.warning("No webhook secret configured, skipping signature verification")
        return None
    if not signature:
        raise InvalidSignature("Missing webhook signature")
    for secret, webhook_type in secrets:
        if verify_signature(body, signature, secret):
            return webhook_type
    logger.warning(f"Invalid webhook signature, tried {len(secrets)} secret(s)")
    raise InvalidSignature("Invalid webhook signature")


# ── Dispatch ──
async def _curated_hash(db: AsyncSession, cast_hash: str) -> Optional[str]:
    result = await db.execute(
        select(CuratedCast.cast_hash).where(
            CuratedCast.cast_hash == cast_hash,
            CuratedCast.cast_hash != PARENT_CAST_PLACEHOLDER_HASH,
        )
    )
    return result.scalar_one_or_none()


async def handle_cast_created(db: AsyncSession, cast: CastData, tag: Optional[str]) -> Dict[str, Any]:
    outcome: Dict[str, Any] = {}

    # Watchers only hear about top-level casts
    if tag in (None, WebhookType.USER_WATCH.value) and not cast.parent_hash:
        outcome["watch"] = await notifications.notify_watchers(db, cast)

    if tag in (None, WebhookType.CURATED_REPLY.value) and cast.parent_hash:
        if meets_quality_threshold(cast):
            curated_hash = await conversation.store_thread_reply(db, cast)
            if curated_hash:
                outcome["reply_to"] = curated_hash
                if cast.author.fid is not None:
                    await curation.record_interaction(db, cast.hash, "reply", cast.author.fid)
        else:
            logger.info(f"Ignoring reply {cast.hash} below quality threshold")

    if tag in (None, WebhookType.CURATED_QUOTE.value):
        for quoted in cast.quoted_cast_hashes():
            curated_hash = await _curated_hash(db, quoted)
            if curated_hash is None:
                continue
            if meets_quality_threshold(cast):
                await conversation.store_quote(db, cast, curated_hash)
                outcome["quote_of"] = curated_hash
                if cast.author.fid is not None:
                    await curation.record_interaction(db, cast.hash, "quote", cast.author.fid)
            break

    if "reply_to" in outcome or "quote_of" in outcome:
        feed_cache.clear()
    return outcome


def _reaction_fields(data: Dict[str, Any]) -> Optional[Tuple[str, str, int]]:
    kind = REACTION_TYPES.get(data.get("reaction_type"))
    target = (data.get("cast") or {}).get("hash") or (data.get("target") or {}).get("hash")
    fid = (data.get("user") or {}).get("fid")
    if not kind or not target or fid is None:
        return None
    return target, kind, int(fid)


async def handle_reaction(db: AsyncSession, event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    fields = _reaction_fields(data)
    if fields is None:
        logger.info(f"Ignoring {event_type} without cast, reaction type or user")
        return {}
    target, kind, fid = fields
    if event_type == REACTION_CREATED:
        curated_hash = await curation.record_interaction(db, target, kind, fid)
        return {"recorded": bool(curated_hash)}
    removed = await curation.remove_interaction(db, target, kind, fid)
    return {"removed": removed}


async def dispatch(db: AsyncSession, payload: Dict[str, Any], tag: Optional[str]) -> Dict[str, Any]:
    event_type = payload.get("type")
    data = payload.get("data") or {}

    if event_type == CAST_CREATED:
        cast = CastData.parse(data)
        if cast is None:
            logger.warning("cast.created webhook without a usable cast")
            return {"handled": False}
        return {"handled": True, **await handle_cast_created(db, cast, tag)}

    if event_type in (REACTION_CREATED, REACTION_DELETED):
        if tag not in (None, WebhookType.CURATED_REACTION.value):
            return {"handled": False}
        return {"handled": True, **await handle_reaction(db, event_type, data)}

    logger.debug(f"Ignoring webhook event {event_type}")
    return {"handled": False}
