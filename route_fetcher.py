# route_fetcher.py
import asyncio
import logging
from typing import Dict, Optional

from http_utils import CancelToken, TTLCache, run_with_token
from lookup_config import RoutingPolicy, default_policy
from lookup_models import Coordinate, RouteNotFound, RouteProfile, RouteResult
from routing_providers import plan_requests

logger = logging.getLogger(__name__)


class RouteFetcher:
    """Fetches eco/fast routes through a router, walking the fallback chain and caching results."""

    def __init__(self, http, router, policy: Optional[RoutingPolicy] = None):
        self.http = http
        self.router = router
        self.policy = policy or default_policy()
        self.cache = TTLCache(self.policy.cache_ttl_sec)
        self.requests_made = 0

    @staticmethod
    def cache_key(profile: RouteProfile, origin: Coordinate, destination: Coordinate):
        return (origin.latitude, origin.longitude, destination.latitude, destination.longitude, profile.value)

    async def fetch_route(self, profile: RouteProfile, origin: Coordinate, destination: Coordinate,
                          token: Optional[CancelToken] = None) -> RouteResult:
        profile = RouteProfile.parse(profile)
        key = self.cache_key(profile, origin, destination)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        chain = plan_requests(self.policy, profile, origin, destination)
        last_error: Optional[RouteNotFound] = None
        for attempt, request in enumerate(chain):
            if token is not None:
                token.raise_if_cancelled()
            if attempt:
                logger.info("[ROUTE] %s: no route, falling back to %s", profile.value, request.mode.value)
            self.requests_made += 1
            try:
                result = await run_with_token(
                    self.router.route(self.http, request, origin, destination, profile), token)
            except RouteNotFound as e:
                last_error = e
                continue
            self.cache.set(key, result)
            return result

        logger.warning("[ROUTE] %s: no route after %d attempt(s)", profile.value, len(chain))
        raise last_error

    async def fetch_pair(self, origin: Coordinate, destination: Coordinate,
                         token: Optional[CancelToken] = None) -> Dict[RouteProfile, RouteResult]:
        """Both profiles concurrently. Any failure fails the pair; the eco error wins when both fail."""
        profiles = [RouteProfile.ECO, RouteProfile.FAST]
        results = await asyncio.gather(
            *(self.fetch_route(p, origin, destination, token) for p in profiles),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return dict(zip(profiles, results))
