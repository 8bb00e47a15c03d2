"""Webhooks router — inbound Neynar events."""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from depthcaster.database import get_db
from depthcaster.services.webhooks import InvalidSignature, authenticate, dispatch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("")
async def receive(request: Request, db: AsyncSession = Depends(get_db)):
    body = await request.body()
    signature = request.headers.get("x-neynar-signature")

    try:
        tag = await authenticate(db, body, signature)
    except InvalidSignature as e:
        raise HTTPException(status_code=401, detail=str(e))

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    outcome = await dispatch(db, payload, tag)
    logger.info(f"Webhook {payload.get('type')} ({tag or 'inferred'}): {outcome}")
    return {"success": True, **outcome}
