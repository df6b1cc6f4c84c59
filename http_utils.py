# http_utils.py
import asyncio
import logging
import time
from typing import Any, Dict, Hashable, Optional, Set, Tuple

import aiohttp

from lookup_models import ServiceUnavailable, Superseded

logger = logging.getLogger(__name__)


# ---------------------------
# Simple in-memory cache with TTL
# ---------------------------
class CacheEntry:
    def __init__(self, data: Any, ttl_seconds: Optional[float] = None):
        self.data = data
        self.created_at = time.time()
        self.ttl = ttl_seconds

    def is_expired(self) -> bool:
        if self.ttl is None:
            return False
        return time.time() - self.created_at > self.ttl


class TTLCache:
    """Per-client cache. A ttl of None keeps entries until the owner goes away."""

    def __init__(self, ttl_seconds: Optional[float] = None):
        self.ttl = ttl_seconds
        self._entries: Dict[Hashable, CacheEntry] = {}

    def get(self, key: Hashable) -> Optional[Any]:
        if key in self._entries:
            entry = self._entries[key]
            if not entry.is_expired():
                return entry.data
            else:
                del self._entries[key]
        return None

    def set(self, key: Hashable, data: Any) -> None:
        self._entries[key] = CacheEntry(data, self.ttl)

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------
# Cancellation
# ---------------------------
class CancelToken:
    """
    Cooperative cancellation for one logical request.

    Work started through :meth:`run` is tied to the token: cancelling the
    token cancels those tasks, and any result that still arrives afterwards
    is discarded with :class:`Superseded`. Whoever issues a newer request is
    responsible for cancelling the older token.
    """

    def __init__(self, label: str = ""):
        self.label = label
        self._cancelled = False
        self._tasks: Set[asyncio.Future] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise Superseded(f"{self.label or 'request'} was superseded")

    async def run(self, coro):
        if self._cancelled:
            coro.close()
            self.raise_if_cancelled()
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        try:
            result = await task
        except asyncio.CancelledError:
            if self._cancelled:
                raise Superseded(f"{self.label or 'request'} was superseded") from None
            raise
        finally:
            self._tasks.discard(task)
        self.raise_if_cancelled()
        return result


async def run_with_token(coro, token: Optional[CancelToken]):
    if token is None:
        return await coro
    return await token.run(coro)


# ---------------------------
# HTTP
# ---------------------------
async def request_json(http, method: str, url: str, *, tag: str, timeout: float,
                       **kwargs) -> Tuple[int, Any]:
    """
    Perform one request and return (status, decoded JSON or None).

    Transport errors and timeouts become ServiceUnavailable; status handling
    is left to the caller since each service signals "no result" differently.
    """
    try:
        async with http.request(method, url, timeout=aiohttp.ClientTimeout(total=timeout), **kwargs) as resp:
            status = resp.status
            try:
                data = await resp.json(content_type=None)
            except ValueError:
                data = None
            return status, data
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.warning("[%s] request failed: %s", tag, e)
        raise ServiceUnavailable(f"{tag} request failed: {e}") from e
