import asyncio

import aiohttp
import folium
import pytest

from conftest import FakeHttp, FakeResponse, barcelona_services, fake_settings
from emissions import EmissionsClient
from lookup_models import (Coordinate, EmissionsUnavailable, RouteProfile, RouteResult, Session,
                           TravelMode)
from presenter import (ALTERNATE_STYLE, CO2_PLACEHOLDER, ROUTE_COLORS, SELECTED_STYLE, Presenter,
                       default_recommendation, meters_to_km, seconds_to_minutes)

ORIGIN = "Plaça Catalunya, Barcelona"
DESTINATION = "Sagrada Família, Barcelona"


def polylines(m: folium.Map):
    return [child for child in m._children.values() if isinstance(child, folium.PolyLine)]


@pytest.mark.parametrize("meters", [0, 999, 1234, 2345.678, 10005, 123456.7])
def test_distance_in_km_two_decimals(meters):
    assert meters_to_km(meters) == round(meters / 1000, 2)


@pytest.mark.parametrize("seconds", [0, 29, 31, 540, 545, 3600, 5432.1])
def test_duration_in_whole_minutes(seconds):
    assert seconds_to_minutes(seconds) == round(seconds / 60)
    assert isinstance(seconds_to_minutes(seconds), int)


def test_selected_route_is_prominent(client):
    session = asyncio.run(client.calculate(ORIGIN, DESTINATION, "eco"))
    m = client.presenter.build_map(session)

    lines = polylines(m)
    assert len(lines) == 2
    alternate, selected = lines
    assert selected.options["color"] == ROUTE_COLORS[RouteProfile.ECO]
    assert selected.options["weight"] == SELECTED_STYLE["weight"]
    assert alternate.options["color"] == ROUTE_COLORS[RouteProfile.FAST]
    assert alternate.options["weight"] == ALTERNATE_STYLE["weight"]
    assert selected.options["weight"] > alternate.options["weight"]


def test_switching_redraws_fresh_map(client):
    asyncio.run(client.calculate(ORIGIN, DESTINATION, "eco"))
    session = client.switch_profile("fast")
    m = client.presenter.build_map(session)

    lines = polylines(m)
    assert len(lines) == 2
    assert lines[-1].options["color"] == ROUTE_COLORS[RouteProfile.FAST]


def test_render_with_emissions_backend_down(services, client):
    services.emissions = None
    asyncio.run(client.calculate(ORIGIN, DESTINATION, "eco"))

    view = asyncio.run(client.render())

    assert view.summary["co2"] == CO2_PLACEHOLDER
    assert view.summary["recommendation"] == default_recommendation(RouteProfile.ECO)
    assert view.summary["emissions_backend"] is False
    assert "ECO distance (green):</b> 2.30 km" in view.html
    assert "9 min" in view.html


def test_render_with_emissions_estimate(services, client):
    services.emissions = (200, {"co2_estimated_g": 412.5, "recommendation": "Take the bike"})
    asyncio.run(client.calculate(ORIGIN, DESTINATION, "fast"))

    view = asyncio.run(client.render())

    assert view.summary["co2"] == "412.5 g"
    assert view.summary["recommendation"] == "Take the bike"
    assert view.summary["distance_km"] == 2.9
    assert view.summary["duration_min"] == 8
    assert view.summary["selected_profile"] == "fast"
    assert view.summary["alternate_profile"] == "eco"
    _, url, kwargs = client.http.calls[-1]
    assert url == "https://co2.test/route"
    assert kwargs["json"]["mode"] == "fast"


def test_render_escapes_backend_text(services, client):
    services.emissions = (200, {"co2_estimated_g": 10, "recommendation": "<script>x</script>"})
    asyncio.run(client.calculate(ORIGIN, DESTINATION))
    view = asyncio.run(client.render())
    assert "<script>x</script>" not in view.html.split("<iframe")[0]


def test_render_without_emissions_client():
    route = RouteResult(geometry=(), distance_m=1500.0, duration_s=90.0, profile=RouteProfile.ECO,
                        mode=TravelMode.CYCLING)
    session = Session(
        origin=Coordinate(41.0, 2.0),
        destination=Coordinate(41.01, 2.01),
        routes={RouteProfile.ECO: route, RouteProfile.FAST: route.with_profile(RouteProfile.FAST)},
        selected_profile=RouteProfile.FAST,
    )

    view = asyncio.run(Presenter().render(session))

    assert view.summary["co2"] == CO2_PLACEHOLDER
    assert view.summary["recommendation"] == default_recommendation(RouteProfile.FAST)
    assert view.summary["duration_min"] == 2


def test_session_requires_both_profiles():
    route = RouteResult(geometry=(), distance_m=1.0, duration_s=1.0, profile=RouteProfile.ECO)
    with pytest.raises(ValueError):
        Session(origin=Coordinate(0, 0), destination=Coordinate(1, 1),
                routes={RouteProfile.ECO: route}, selected_profile=RouteProfile.ECO)


# ---------------------------
# Emissions client
# ---------------------------
def test_emissions_tries_candidates_in_order():
    calls = []

    def handler(method, url, kwargs):
        calls.append(url)
        if url.startswith("https://a.test"):
            return aiohttp.ClientConnectionError("refused")
        return FakeResponse(200, {"co2_estimated_g": 120, "recommendation": "ok"})

    settings = fake_settings(emissions_base_url=None, emissions_candidate_urls=("https://a.test", "https://b.test/"))
    emissions = EmissionsClient(FakeHttp(handler), settings)

    async def scenario():
        first = await emissions.estimate(Coordinate(41.0, 2.0), Coordinate(41.1, 2.1), RouteProfile.ECO)
        second = await emissions.estimate(Coordinate(41.0, 2.0), Coordinate(41.1, 2.1), RouteProfile.ECO)
        return first, second

    first, second = asyncio.run(scenario())

    assert first.estimated_g == 120.0
    assert emissions.base_url == "https://b.test"
    assert calls == ["https://a.test/route", "https://b.test/route", "https://b.test/route"]


def test_emissions_malformed_body_is_unavailable():
    emissions = EmissionsClient(FakeHttp(lambda m, u, k: FakeResponse(200, {"unexpected": True})),
                                fake_settings())
    with pytest.raises(EmissionsUnavailable):
        asyncio.run(emissions.estimate(Coordinate(41.0, 2.0), Coordinate(41.1, 2.1), RouteProfile.ECO))


def test_emissions_http_error_is_unavailable():
    services = barcelona_services()
    services.emissions = (500, {"detail": "boom"})
    emissions = EmissionsClient(FakeHttp(services), fake_settings())
    with pytest.raises(EmissionsUnavailable):
        asyncio.run(emissions.estimate(Coordinate(41.0, 2.0), Coordinate(41.1, 2.1), "fast"))
