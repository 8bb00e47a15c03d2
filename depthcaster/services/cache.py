"""
Short-lived in-process memoization.

``TTLCache`` holds hot query results (feed pages, the curator FID list) and
``InFlight`` coalesces identical concurrent Neynar lookups onto one call.
"""

import asyncio
import json
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional

from depthcaster.config import settings

logger = logging.getLogger(__name__)


def make_key(prefix: str, params: Dict[str, Any]) -> str:
    """Stable key regardless of parameter order."""
    parts = [f"{name}:{json.dumps(params[name], sort_keys=True, default=str)}" for name in sorted(params)]
    return f"{prefix}:" + "|".join(parts)


class TTLCache:
    """Size-bounded mapping whose entries expire ``ttl`` seconds after being set."""

    def __init__(self, ttl: float, maxsize: int = 100, timer: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.maxsize = maxsize
        self._timer = timer
        self._data: "OrderedDict[Hashable, tuple]" = OrderedDict()

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._data.get(key)
        if entry is None:
            return default
        expires_at, value = entry
        if expires_at <= self._timer():
            del self._data[key]
            return default
        self._data.move_to_end(key)
        return value

    def set(self, key: Hashable, value: Any) -> None:
        self._data[key] = (self._timer() + self.ttl, value)
        self._data.move_to_end(key)
        while len(self._data) > self.maxsize:
            self._data.popitem(last=False)

    def delete(self, key: Hashable) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        return len(self._data)


_MISSING = object()


class InFlight:
    """Share one running coroutine between callers that ask for the same key."""

    def __init__(self):
        self._pending: Dict[Hashable, asyncio.Future] = {}

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[Any]]) -> Any:
        future = self._pending.get(key)
        if future is None:
            future = asyncio.ensure_future(factory())
            self._pending[key] = future
            future.add_done_callback(lambda _f, k=key: self._pending.pop(k, None))
        else:
            logger.debug(f"Joining in-flight request {key}")
        return await asyncio.shield(future)

    def __len__(self) -> int:
        return len(self._pending)


# ── Shared instances ──
feed_cache = TTLCache(ttl=settings.FEED_CACHE_TTL_SECONDS, maxsize=100)
curator_cache = TTLCache(ttl=settings.CURATOR_CACHE_TTL_SECONDS, maxsize=1)
neynar_requests = InFlight()


def clear_all_caches() -> None:
    feed_cache.clear()
    curator_cache.clear()
