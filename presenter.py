# presenter.py
import html
import logging
from typing import Dict, List, Optional, Tuple

import folium
from folium.plugins import Fullscreen, MeasureControl

from emissions import EmissionsClient
from lookup_models import (EmissionsUnavailable, RenderedView, RouteProfile, RouteResult,
                           Session)

logger = logging.getLogger(__name__)

CO2_PLACEHOLDER = "—"

ROUTE_COLORS = {
    RouteProfile.ECO: "#16a34a",   # green
    RouteProfile.FAST: "#2563eb",  # blue
}
SELECTED_STYLE = {"weight": 6, "opacity": 0.9}
ALTERNATE_STYLE = {"weight": 3, "opacity": 0.5, "dash_array": "6 6"}

DEFAULT_RECOMMENDATIONS = {
    RouteProfile.ECO: "Eco route selected: it avoids highways and keeps emissions low.",
    RouteProfile.FAST: "Fast route selected: the eco route (green line) would cut emissions.",
}


def meters_to_km(distance_m: float) -> float:
    return round(distance_m / 1000, 2)


def seconds_to_minutes(duration_s: float) -> int:
    return round(duration_s / 60)


def default_recommendation(profile: RouteProfile) -> str:
    return DEFAULT_RECOMMENDATIONS[RouteProfile.parse(profile)]


def route_bounds(session: Session) -> List[List[float]]:
    points: List[Tuple[float, float]] = [session.origin.as_latlon(), session.destination.as_latlon()]
    for route in session.routes.values():
        points.extend(c.as_latlon() for c in route.geometry)
    lats = [p[0] for p in points]
    lons = [p[1] for p in points]
    return [[min(lats), min(lons)], [max(lats), max(lons)]]


class Presenter:
    """Draws a session on a folium map and builds its textual summary."""

    def __init__(self, emissions: Optional[EmissionsClient] = None, tiles: str = "cartodb positron"):
        self.emissions = emissions
        self.tiles = tiles

    def _add_route(self, m: folium.Map, route: RouteResult, selected: bool) -> None:
        if len(route.geometry) < 2:
            return
        style = SELECTED_STYLE if selected else ALTERNATE_STYLE
        label = "ECO" if route.profile is RouteProfile.ECO else "FAST"
        folium.PolyLine(
            [c.as_latlon() for c in route.geometry],
            color=ROUTE_COLORS[route.profile],
            tooltip=f"{label}: {meters_to_km(route.distance_m):.2f} km",
            **style,
        ).add_to(m)

    def build_map(self, session: Session) -> folium.Map:
        # a fresh map per render, so nothing from an earlier session survives
        midpoint = [
            (session.origin.latitude + session.destination.latitude) / 2,
            (session.origin.longitude + session.destination.longitude) / 2,
        ]
        m = folium.Map(location=midpoint, zoom_start=13, tiles=self.tiles)

        # alternate first so the selected route is drawn on top
        self._add_route(m, session.alternate, selected=False)
        self._add_route(m, session.selected, selected=True)

        folium.Marker(list(session.origin.as_latlon()), popup=folium.Popup(html.escape(session.origin_label or "Origin")),
                      icon=folium.Icon(color="green", prefix="fa", icon="play")).add_to(m)
        folium.Marker(list(session.destination.as_latlon()),
                      popup=folium.Popup(html.escape(session.destination_label or "Destination")),
                      icon=folium.Icon(color="red", prefix="fa", icon="flag-checkered")).add_to(m)

        m.fit_bounds(route_bounds(session), padding=(40, 40))
        m.add_child(MeasureControl(primary_length_unit='kilometers'))
        m.add_child(Fullscreen(position='topright'))
        return m

    async def _emissions_text(self, session: Session) -> Tuple[str, str, bool]:
        if self.emissions is None:
            return CO2_PLACEHOLDER, default_recommendation(session.selected_profile), False
        try:
            estimate = await self.emissions.estimate(session.origin, session.destination,
                                                     session.selected_profile)
        except EmissionsUnavailable as e:
            logger.info("[EMISSIONS] falling back to local recommendation: %s", e)
            return CO2_PLACEHOLDER, default_recommendation(session.selected_profile), False
        recommendation = estimate.recommendation or default_recommendation(session.selected_profile)
        return f"{estimate.estimated_g:g} g", recommendation, True

    def summarize(self, session: Session, co2_text: str, recommendation: str,
                  backend_ok: bool) -> Dict[str, object]:
        selected = session.selected
        return {
            "selected_profile": session.selected_profile.value,
            "alternate_profile": session.selected_profile.alternate.value,
            "eco_km": meters_to_km(session.routes[RouteProfile.ECO].distance_m),
            "fast_km": meters_to_km(session.routes[RouteProfile.FAST].distance_m),
            "distance_km": meters_to_km(selected.distance_m),
            "duration_min": seconds_to_minutes(selected.duration_s),
            "co2": co2_text,
            "recommendation": recommendation,
            "emissions_backend": backend_ok,
        }

    def summary_html(self, summary: Dict[str, object]) -> str:
        if summary["selected_profile"] == RouteProfile.ECO.value:
            info = "You prioritised the ECO route (green line)."
        else:
            info = "You prioritised the FAST route (blue line)."
        return f"""
        <div class="summary">
            <b>ECO distance (green):</b> {summary['eco_km']:.2f} km<br>
            <b>FAST distance (blue):</b> {summary['fast_km']:.2f} km<br>
            <b>Selected route:</b> {summary['distance_km']:.2f} km, {summary['duration_min']} min<br>
            <b>Estimated CO₂ (selected mode):</b> {html.escape(str(summary['co2']))}<br>
            <b>Recommendation:</b> {html.escape(str(summary['recommendation']))}<br>
            <span class="muted">{info}</span>
        </div>
        """

    async def render(self, session: Session) -> RenderedView:
        co2_text, recommendation, backend_ok = await self._emissions_text(session)
        summary = self.summarize(session, co2_text, recommendation, backend_ok)
        m = self.build_map(session)
        page = self.summary_html(summary) + m._repr_html_()
        return RenderedView(html=page, summary=summary)
