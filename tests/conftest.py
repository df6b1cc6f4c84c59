import asyncio
import inspect
from typing import Dict, List, Optional, Tuple

import aiohttp
import pytest

from lookup_config import RoutingPolicy, Settings
from route_lookup import RouteLookupClient


def _norm(q: str) -> str:
    return " ".join(q.split()).casefold()


class FakeResponse:
    def __init__(self, status: int = 200, payload=None, not_json: bool = False):
        self.status = status
        self.payload = payload
        self.not_json = not_json

    async def json(self, content_type=None):
        if self.not_json:
            raise ValueError("not json")
        return self.payload


class _RequestContext:
    def __init__(self, http, method, url, kwargs):
        self.http = http
        self.method = method
        self.url = url
        self.kwargs = kwargs

    async def __aenter__(self):
        self.http.calls.append((self.method, self.url, self.kwargs))
        result = self.http.handler(self.method, self.url, self.kwargs)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, BaseException):
            raise result
        return result

    async def __aexit__(self, *exc):
        return False


class FakeHttp:
    """Stands in for aiohttp.ClientSession; every request goes through ``handler``."""

    def __init__(self, handler):
        self.handler = handler
        self.calls: List[Tuple[str, str, dict]] = []
        self.closed = False

    def request(self, method, url, **kwargs):
        return _RequestContext(self, method, url, kwargs)

    async def close(self):
        self.closed = True


class FakeServices:
    """Nominatim + OpenRouteService + emissions backend, all in memory."""

    def __init__(self):
        self.places: Dict[str, list] = {}
        self.routes: Dict[str, Tuple[int, object]] = {}
        self.geocode_status = 200
        self.geocode_down = False
        self.emissions: Optional[Tuple[int, object]] = None
        self.gates: Dict[str, Tuple[asyncio.Event, asyncio.Event]] = {}

    # -- setup helpers
    def add_place(self, query, *candidates):
        self.places[_norm(query)] = [
            {"display_name": name, "lat": str(lat), "lon": str(lon)} for name, lat, lon in candidates
        ]

    def add_route(self, ors_profile, latlon, distance, duration):
        self.routes[ors_profile] = (200, {
            "features": [{
                "geometry": {"coordinates": [[lon, lat] for lat, lon in latlon]},
                "properties": {"summary": {"distance": distance, "duration": duration}},
            }],
        })

    def fail_route(self, ors_profile, status):
        self.routes[ors_profile] = (status, {"error": {"code": 2009, "message": "Route could not be found"}})

    def gate(self, key):
        """Hold responses whose geocode query or ORS profile equals ``key`` until released."""
        self.gates[key] = (asyncio.Event(), asyncio.Event())

    async def wait_entered(self, key):
        await self.gates[key][0].wait()

    def release(self, key):
        self.gates[key][1].set()

    async def _hold(self, key):
        if key in self.gates:
            entered, release = self.gates[key]
            entered.set()
            await release.wait()

    # -- request handling
    async def __call__(self, method, url, kwargs):
        if url.endswith("/search"):
            q = _norm(kwargs["params"]["q"])
            await self._hold(q)
            if self.geocode_down:
                return aiohttp.ClientConnectionError("connection refused")
            return FakeResponse(self.geocode_status, self.places.get(q, []))

        if "/v2/directions/" in url:
            profile = url.split("/v2/directions/")[1].split("/")[0]
            await self._hold(profile)
            status, payload = self.routes.get(profile, (404, {"error": {"code": 2009}}))
            return FakeResponse(status, payload)

        if url.endswith("/route") and method == "POST":
            if self.emissions is None:
                return aiohttp.ClientConnectionError("connection refused")
            status, payload = self.emissions
            return FakeResponse(status, payload)

        return FakeResponse(404, None)


PLACA_CATALUNYA = ("Plaça de Catalunya, Barcelona", 41.3869, 2.1701)
SAGRADA_FAMILIA = ("Sagrada Família, Barcelona", 41.4036, 2.1744)
CAMP_NOU = ("Camp Nou, Barcelona", 41.3809, 2.1228)


def barcelona_services() -> FakeServices:
    s = FakeServices()
    s.add_place("Plaça Catalunya, Barcelona", PLACA_CATALUNYA)
    s.add_place("Sagrada Família, Barcelona", SAGRADA_FAMILIA)
    s.add_place("Camp Nou, Barcelona", CAMP_NOU)
    s.add_route("cycling-regular", [(41.3869, 2.1701), (41.3950, 2.1720), (41.4036, 2.1744)], 2300.0, 540.0)
    s.add_route("driving-car", [(41.3869, 2.1701), (41.3920, 2.1650), (41.4036, 2.1744)], 2900.0, 480.0)
    return s


def fake_settings(**overrides) -> Settings:
    values = dict(
        routing_provider="ors",
        ors_api_key="test-key",
        ors_url="https://ors.test",
        nominatim_url="https://nominatim.test",
        emissions_base_url="https://co2.test",
        emissions_candidate_urls=(),
    )
    values.update(overrides)
    return Settings(**values)


def make_client(services: FakeServices, policy: Optional[RoutingPolicy] = None, **settings) -> RouteLookupClient:
    return RouteLookupClient(
        http=FakeHttp(services),
        policy=policy or RoutingPolicy(debounce_seconds=0),
        settings=fake_settings(**settings),
    )


def count_calls(client: RouteLookupClient, fragment: str) -> int:
    return sum(1 for _, url, _ in client.http.calls if fragment in url)


@pytest.fixture
def services():
    return barcelona_services()


@pytest.fixture
def client(services):
    return make_client(services)
