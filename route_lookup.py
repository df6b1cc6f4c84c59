# route_lookup.py
import asyncio
import logging
from typing import Dict, Optional, Tuple

import aiohttp

from emissions import EmissionsClient
from geocoding import Geocoder, InputField, SuggestionBox
from http_utils import CancelToken
from lookup_config import RoutingPolicy, Settings, default_policy
from lookup_models import (InvalidInput, PlaceCandidate, PlaceNotFound, RenderedView, RouteLookupError,
                           RouteProfile, Session, Superseded)
from presenter import Presenter
from route_fetcher import RouteFetcher
from routing_providers import make_router

logger = logging.getLogger(__name__)

FIELDS = ("origin", "destination")


class RouteLookupClient:
    """
    Route lookup for one page/tab.

    Owns its HTTP session, caches, input fields and the current Session.
    ``calculate`` replaces the Session only when both routes are in;
    ``switch_profile`` never touches the network.
    """

    def __init__(self, http=None, policy: Optional[RoutingPolicy] = None,
                 settings: Optional[Settings] = None, router=None):
        self.policy = policy or default_policy()
        self.settings = settings or Settings()
        self._owns_http = http is None
        self.http = http if http is not None else aiohttp.ClientSession(
            headers={"User-Agent": self.settings.user_agent})
        self.router = router or make_router(self.settings)

        self.geocoder = Geocoder(self.http, self.policy, self.settings)
        self.fetcher = RouteFetcher(self.http, self.router, self.policy)
        self.emissions = EmissionsClient(self.http, self.settings)
        self.presenter = Presenter(self.emissions)

        self.fields: Dict[str, InputField] = {name: InputField(name) for name in FIELDS}
        self.suggestion_boxes: Dict[str, SuggestionBox] = {
            name: SuggestionBox(f, self.geocoder) for name, f in self.fields.items()
        }

        self.session: Optional[Session] = None
        self._calc_token: Optional[CancelToken] = None

    # ---------------------------
    # Input fields
    # ---------------------------
    @property
    def origin(self) -> InputField:
        return self.fields["origin"]

    @property
    def destination(self) -> InputField:
        return self.fields["destination"]

    def _field(self, name: str) -> InputField:
        if name not in self.fields:
            raise InvalidInput(f"unknown field: {name!r}")
        return self.fields[name]

    def _invalidate_if_stale(self) -> None:
        s = self.session
        if s is None:
            return
        if self.origin.text.strip() != s.origin_label or self.destination.text.strip() != s.destination_label:
            logger.debug("[SESSION] inputs changed, discarding routes")
            self.session = None

    def type_text(self, field: str, text: str) -> None:
        self._field(field).set_text(text)
        self._invalidate_if_stale()

    def type_origin(self, text: str) -> None:
        self.type_text("origin", text)

    def type_destination(self, text: str) -> None:
        self.type_text("destination", text)

    async def suggest(self, field: str, text: str):
        """Debounced suggestions; None when a newer keystroke superseded this one."""
        self.type_text(field, text)
        return await self.suggestion_boxes[field].suggest(text)

    def select(self, field: str, candidate: PlaceCandidate) -> None:
        self._field(field)
        self.suggestion_boxes[field].select(candidate)
        self._invalidate_if_stale()

    # ---------------------------
    # Calculate / switch
    # ---------------------------
    async def _resolve(self, field: InputField, text: str, token: CancelToken) -> PlaceCandidate:
        bound = field.binding_for(text)
        if bound is not None:
            return bound
        candidates = await self.geocoder.geocode(text, token)
        if not candidates:
            raise PlaceNotFound(text)
        return candidates[0]

    async def _resolve_pair(self, origin_text: str, destination_text: str,
                            token: CancelToken) -> Tuple[PlaceCandidate, PlaceCandidate]:
        results = await asyncio.gather(
            self._resolve(self.origin, origin_text, token),
            self._resolve(self.destination, destination_text, token),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return results[0], results[1]

    async def calculate(self, origin_query: str, destination_query: str,
                        profile=RouteProfile.ECO) -> Session:
        profile = RouteProfile.parse(profile)
        origin_text = (origin_query or "").strip()
        destination_text = (destination_query or "").strip()
        if not origin_text or not destination_text:
            raise InvalidInput("Enter a place name for both origin and destination.")

        if self._calc_token is not None:
            self._calc_token.cancel()
        token = CancelToken("calculate")
        self._calc_token = token
        typed = (self.origin.text, self.destination.text)

        try:
            origin, destination = await self._resolve_pair(origin_text, destination_text, token)
            routes = await self.fetcher.fetch_pair(origin.coordinate, destination.coordinate, token)
            token.raise_if_cancelled()
            if (self.origin.text, self.destination.text) != typed:
                raise Superseded("inputs were edited while calculating")
        except RouteLookupError as e:
            logger.info("[SESSION] calculate %r -> %r failed: %s", origin_text, destination_text, e)
            raise
        finally:
            if self._calc_token is token:
                self._calc_token = None

        session = Session(
            origin=origin.coordinate,
            destination=destination.coordinate,
            routes=routes,
            selected_profile=profile,
            origin_label=origin.display_name,
            destination_label=destination.display_name,
        )
        self.session = session
        self.origin.bind(origin)
        self.destination.bind(destination)
        logger.info("[SESSION] %s -> %s: eco %.0f m, fast %.0f m", origin.display_name,
                    destination.display_name, routes[RouteProfile.ECO].distance_m,
                    routes[RouteProfile.FAST].distance_m)
        return session

    def switch_profile(self, profile) -> Session:
        profile = RouteProfile.parse(profile)
        if self.session is None:
            raise InvalidInput("Calculate a route before switching profile.")
        self.session = self.session.with_selected(profile)
        return self.session

    async def render(self) -> RenderedView:
        if self.session is None:
            raise InvalidInput("Nothing to render yet.")
        return await self.presenter.render(self.session)

    async def close(self) -> None:
        if self._calc_token is not None:
            self._calc_token.cancel()
            self._calc_token = None
        for box in self.suggestion_boxes.values():
            box.cancel()
        if self._owns_http:
            await self.http.close()
