"""
Depthcaster — FastAPI application entry-point.

Run with:
    uvicorn depthcaster.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from depthcaster import __version__
from depthcaster.config import settings
from depthcaster.database import Base, async_session, engine
from depthcaster.services.curation import ensure_placeholder_cast

import depthcaster.models  # noqa: F401  (registers every table on Base.metadata)

# ── Import routers ──
from depthcaster.routers import (
    admin,
    cast,
    conversation,
    curate,
    feed,
    notifications,
    polls,
    tags,
    watches,
    webhooks,
)

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: create tables on startup ──
@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with async_session() as session:
        await ensure_placeholder_cast(session)
        await session.commit()
    logger.info(f"{settings.APP_NAME} started")
    yield


app = FastAPI(
    title=settings.APP_NAME,
    description="Curated Farcaster conversations — curated feed, threaded replies, polls and watches.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=("*",))


# ── Error shape: {"error": "..."} everywhere ──
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    message = first.get("msg", "Invalid request")
    return JSONResponse({"error": f"{location}: {message}" if location else message}, status_code=400)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse({"error": "Internal server error"}, status_code=500)


# ── Register API routers ──
app.include_router(feed.router)
app.include_router(conversation.router)
app.include_router(curate.router)
app.include_router(cast.router)
app.include_router(polls.router)
app.include_router(admin.router)
app.include_router(tags.router)
app.include_router(watches.router)
app.include_router(notifications.router)
app.include_router(webhooks.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": __version__}
