# geocoding.py
import asyncio
import logging
import math
from typing import Any, List, Optional

from http_utils import CancelToken, TTLCache, request_json, run_with_token
from lookup_config import RoutingPolicy, Settings, default_policy
from lookup_models import InvalidInput, PlaceCandidate, ServiceUnavailable, Superseded

logger = logging.getLogger(__name__)


def normalize_query(query: str) -> str:
    return " ".join(query.split()).casefold()


def parse_candidates(data: Any, limit: int) -> List[PlaceCandidate]:
    """Nominatim jsonv2 -> PlaceCandidates, keeping the service order."""
    if not isinstance(data, list):
        raise ServiceUnavailable("geocoder returned an unexpected payload")
    out = []
    for item in data:
        try:
            lat = float(item["lat"])
            lon = float(item["lon"])
        except (KeyError, TypeError, ValueError):
            continue
        if math.isnan(lat) or math.isnan(lon):
            continue
        out.append(PlaceCandidate(display_name=str(item.get("display_name", "")), latitude=lat, longitude=lon))
        if len(out) >= limit:
            break
    return out


class Geocoder:
    """Free text -> ranked PlaceCandidates through Nominatim, cached per client."""

    def __init__(self, http, policy: Optional[RoutingPolicy] = None, settings: Optional[Settings] = None):
        self.http = http
        self.policy = policy or default_policy()
        self.settings = settings or Settings()
        self.cache = TTLCache(self.policy.cache_ttl_sec)
        self.requests_made = 0

    async def geocode(self, query: str, token: Optional[CancelToken] = None) -> List[PlaceCandidate]:
        if query is None or not query.strip():
            raise InvalidInput("place name must not be empty")

        key = normalize_query(query)
        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)

        candidates = await run_with_token(self._search(query.strip()), token)
        self.cache.set(key, tuple(candidates))
        return candidates

    async def _search(self, text: str) -> List[PlaceCandidate]:
        url = f"{self.settings.nominatim_url.rstrip('/')}/search"
        params = {"q": text, "format": "jsonv2", "limit": str(self.policy.suggestion_limit)}
        headers = {"Accept-Language": self.policy.language, "User-Agent": self.settings.user_agent}
        self.requests_made += 1
        status, data = await request_json(self.http, "GET", url, tag="GEOCODE",
                                          timeout=self.settings.http_timeout_sec,
                                          params=params, headers=headers)
        if status >= 400:
            logger.warning("[GEOCODE] HTTP %s for %r", status, text)
            raise ServiceUnavailable(f"geocoding failed with HTTP {status}")
        candidates = parse_candidates(data, self.policy.suggestion_limit)
        logger.debug("[GEOCODE] %r -> %d candidates", text, len(candidates))
        return candidates


class InputField:
    """Text of one place input plus the candidate the user picked for it, if any."""

    def __init__(self, name: str):
        self.name = name
        self.text = ""
        self.bound: Optional[PlaceCandidate] = None

    def set_text(self, text: str) -> None:
        self.text = text or ""
        if self.bound is not None and self.text.strip() != self.bound.display_name:
            self.bound = None

    def bind(self, candidate: PlaceCandidate) -> None:
        self.text = candidate.display_name
        self.bound = candidate

    def binding_for(self, text: str) -> Optional[PlaceCandidate]:
        if self.bound is not None and text.strip() == self.bound.display_name:
            return self.bound
        return None


class SuggestionBox:
    """
    Debounced suggestions for one input field.

    Every keystroke retires the previous token, so only the newest query
    can update ``suggestions``; older calls return None.
    """

    def __init__(self, field: InputField, geocoder: Geocoder, debounce_seconds: Optional[float] = None):
        self.field = field
        self.geocoder = geocoder
        self.debounce_seconds = (geocoder.policy.debounce_seconds
                                 if debounce_seconds is None else debounce_seconds)
        self.suggestions: List[PlaceCandidate] = []
        self._token: Optional[CancelToken] = None

    def cancel(self) -> None:
        if self._token is not None:
            self._token.cancel()
            self._token = None

    async def suggest(self, text: str) -> Optional[List[PlaceCandidate]]:
        self.cancel()
        self.field.set_text(text)
        query = (text or "").strip()
        if not query:
            self.suggestions = []
            return []

        token = CancelToken(f"suggest {self.field.name}")
        self._token = token
        try:
            await token.run(asyncio.sleep(self.debounce_seconds))
            result = await self.geocoder.geocode(query, token)
        except Superseded:
            return None
        except ServiceUnavailable as e:
            if token.cancelled:
                return None
            logger.warning("[GEOCODE] suggestions for %r unavailable: %s", query, e)
            result = []

        if token.cancelled:
            return None
        self.suggestions = result
        return result

    def select(self, candidate: PlaceCandidate) -> None:
        self.cancel()
        self.field.bind(candidate)
        self.suggestions = []
