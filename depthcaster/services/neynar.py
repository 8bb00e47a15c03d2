"""
Neynar HTTP client.

Blocking ``requests`` calls run in worker threads so route handlers stay
async. Identical concurrent lookups share a single request.
"""

import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional

import requests

from depthcaster.config import settings
from depthcaster.schemas.cast import CastData
from depthcaster.services.cache import make_key, neynar_requests

logger = logging.getLogger(__name__)

_thread_local = threading.local()


class NeynarError(Exception):
    """Raised when Neynar is unreachable, unconfigured, or answers with an error."""


# ── Session ──
def _session() -> requests.Session:
    session = getattr(_thread_local, "session", None)
    if session is None:
        session = requests.Session()
        session.headers.update(
            {
                "accept": "application/json",
                "x-api-key": settings.NEYNAR_API_KEY,
            }
        )
        _thread_local.session = session
    return session


def _request(method: str, path: str, params: Optional[dict] = None, json: Optional[dict] = None) -> Dict[str, Any]:
    if not settings.NEYNAR_API_KEY:
        raise NeynarError("NEYNAR_API_KEY is not configured")

    url = f"{settings.NEYNAR_API_URL}{path}"
    try:
        resp = _session().request(
            method, url, params=params, json=json, timeout=settings.NEYNAR_TIMEOUT_SECONDS
        )
    except requests.RequestException as e:
        raise NeynarError(f"{method} {path} failed: {e}") from e

    if resp.status_code == 404:
        return {}
    if resp.status_code >= 400:
        body = resp.text.strip()[:300]
        raise NeynarError(f"HTTP {resp.status_code} calling {path}: {body}")

    payload = resp.json()
    if not isinstance(payload, dict):
        raise NeynarError(f"Unexpected response type from {path}: {type(payload).__name__}")
    return payload


# ── Sync calls ──
def _lookup_cast_sync(cast_hash: str) -> Optional[dict]:
    data = _request("GET", "/cast", params={"identifier": cast_hash, "type": "hash"})
    return data.get("cast")


def _lookup_conversation_sync(cast_hash: str, reply_depth: int) -> Optional[dict]:
    data = _request(
        "GET",
        "/cast/conversation",
        params={
            "identifier": cast_hash,
            "type": "hash",
            "reply_depth": reply_depth,
            "include_chronological_parent_casts": "false",
            "limit": 50,
        },
    )
    return (data.get("conversation") or {}).get("cast")


def _fetch_quotes_sync(cast_hash: str, limit: int) -> List[dict]:
    data = _request(
        "GET", "/cast/quotes", params={"identifier": cast_hash, "type": "hash", "limit": limit}
    )
    return data.get("casts") or (data.get("result") or {}).get("quotes") or data.get("quotes") or []


def _publish_cast_sync(body: dict) -> dict:
    data = _request("POST", "/cast", json=body)
    if not data.get("cast"):
        raise NeynarError("Publish response did not include a cast")
    return data["cast"]


# ── Async API ──
async def lookup_cast(cast_hash: str) -> Optional[CastData]:
    """Fetch a single cast; ``None`` when Neynar does not know it."""
    key = make_key("cast", {"hash": cast_hash})
    raw = await neynar_requests.run(key, lambda: asyncio.to_thread(_lookup_cast_sync, cast_hash))
    return CastData.parse(raw)


async def lookup_conversation(cast_hash: str, reply_depth: Optional[int] = None) -> Optional[dict]:
    """Return the raw conversation root with nested ``direct_replies``."""
    depth = reply_depth or settings.CONVERSATION_MAX_DEPTH
    key = make_key("conversation", {"hash": cast_hash, "depth": depth})
    return await neynar_requests.run(
        key, lambda: asyncio.to_thread(_lookup_conversation_sync, cast_hash, depth)
    )


async def fetch_quotes(cast_hash: str, limit: int = 50) -> List[dict]:
    key = make_key("quotes", {"hash": cast_hash, "limit": limit})
    return await neynar_requests.run(
        key, lambda: asyncio.to_thread(_fetch_quotes_sync, cast_hash, limit)
    )


async def publish_cast(
    signer_uuid: str,
    text: str,
    parent: Optional[str] = None,
    embeds: Optional[List[dict]] = None,
) -> CastData:
    """Publish a cast; never de-duplicated."""
    body: Dict[str, Any] = {"signer_uuid": signer_uuid, "text": text}
    if parent:
        body["parent"] = parent
    if embeds:
        body["embeds"] = embeds
    raw = await asyncio.to_thread(_publish_cast_sync, body)
    cast = CastData.parse(raw)
    if cast is None:
        raise NeynarError("Published cast could not be decoded")
    logger.info(f"Published cast {cast.hash}")
    return cast
