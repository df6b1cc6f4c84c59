# routing_providers.py
import logging
from typing import Any, Dict, List, Optional, Tuple

import polyline

from http_utils import request_json
from lookup_config import RoutingPolicy, Settings
from lookup_models import (Coordinate, RouteNotFound, RouteProfile, RouteRequest, RouteResult,
                           ServiceUnavailable, TravelMode, distance_km)

logger = logging.getLogger(__name__)


# ---------------------------
# Profile policy
# ---------------------------
def plan_requests(policy: RoutingPolicy, profile: RouteProfile,
                  origin: Coordinate, destination: Coordinate) -> List[RouteRequest]:
    """
    Ordered provider calls for one profile: the primary request followed by
    the bounded fallback chain (eco only).
    """
    if profile is RouteProfile.FAST:
        return [RouteRequest(TravelMode.DRIVING, preference="fastest")]

    if distance_km(origin, destination) <= policy.eco_cycling_max_km:
        primary = RouteRequest(TravelMode.CYCLING, preference="shortest")
    else:
        primary = RouteRequest(TravelMode.DRIVING, preference="shortest",
                               avoid_features=tuple(policy.eco_avoid_features))
    chain = [primary]
    for mode in policy.fallback_chain:
        chain.append(RouteRequest(TravelMode(mode), preference="shortest"))
    return chain


def coords_polyline_to_latlon(poly: str) -> List[Tuple[float, float]]:
    """Decode polyline to lat/lon."""
    try:
        pts = polyline.decode(poly)
        return [(float(lat), float(lon)) for lat, lon in pts]
    except Exception as e:
        logger.warning("[OSRM] polyline decode error: %s", e)
        return []


# ---------------------------
# OpenRouteService
# ---------------------------
class OrsRouter:
    name = "ors"
    PROFILES = {
        TravelMode.DRIVING: "driving-car",
        TravelMode.CYCLING: "cycling-regular",
        TravelMode.WALKING: "foot-walking",
    }

    def __init__(self, settings: Settings):
        if not settings.ors_api_key:
            raise ValueError("ORS_API_KEY is not set. Please set it in the .env file.")
        self.settings = settings

    def build_body(self, request: RouteRequest, origin: Coordinate, destination: Coordinate) -> Dict[str, Any]:
        # ORS takes [lon, lat]
        body: Dict[str, Any] = {
            "coordinates": [list(origin.as_lonlat()), list(destination.as_lonlat())],
            "preference": request.preference,
        }
        # highways/tollways are only valid avoid features for driving profiles
        if request.avoid_features and request.mode is TravelMode.DRIVING:
            body["options"] = {"avoid_features": list(request.avoid_features)}
        return body

    async def route(self, http, request: RouteRequest, origin: Coordinate, destination: Coordinate,
                    profile: RouteProfile) -> RouteResult:
        ors_profile = self.PROFILES[request.mode]
        url = f"{self.settings.ors_url.rstrip('/')}/v2/directions/{ors_profile}/geojson"
        headers = {"Authorization": self.settings.ors_api_key, "Content-Type": "application/json"}
        status, data = await request_json(http, "POST", url, tag="ORS",
                                          timeout=self.settings.http_timeout_sec,
                                          json=self.build_body(request, origin, destination),
                                          headers=headers)
        if status == 404:
            raise RouteNotFound(f"no {request.mode.value} route found")
        if status >= 400:
            logger.warning("[ORS] HTTP %s for %s: %s", status, ors_profile, data)
            raise ServiceUnavailable(f"routing failed with HTTP {status}")
        if not isinstance(data, dict):
            raise ServiceUnavailable("routing service returned an unexpected payload")

        features = data.get("features") or []
        if not features:
            raise RouteNotFound(f"no {request.mode.value} route found")
        feature = features[0]
        summary = (feature.get("properties") or {}).get("summary") or {}
        coords = (feature.get("geometry") or {}).get("coordinates") or []
        return RouteResult(
            geometry=tuple(Coordinate(float(c[1]), float(c[0])) for c in coords),
            distance_m=float(summary.get("distance", 0.0)),
            duration_s=float(summary.get("duration", 0.0)),
            profile=profile,
            mode=request.mode,
        )


# ---------------------------
# OSRM
# ---------------------------
class OsrmRouter:
    name = "osrm"
    NO_ROUTE_CODES = {"NoRoute", "NoSegment"}

    def __init__(self, settings: Settings):
        self.settings = settings

    def build_params(self, request: RouteRequest) -> Dict[str, str]:
        params = {"alternatives": "false", "overview": "full", "geometries": "polyline"}
        if request.avoid_features and request.mode is TravelMode.DRIVING:
            params["exclude"] = "motorway,toll"
        return params

    async def route(self, http, request: RouteRequest, origin: Coordinate, destination: Coordinate,
                    profile: RouteProfile) -> RouteResult:
        base = self.settings.osrm_base_urls[request.mode.value].rstrip("/")
        coords = f"{origin.longitude},{origin.latitude};{destination.longitude},{destination.latitude}"
        url = f"{base}/route/v1/{self.settings.osrm_profile_segment}/{coords}"
        status, data = await request_json(http, "GET", url, tag="OSRM",
                                          timeout=self.settings.http_timeout_sec,
                                          params=self.build_params(request))
        if not isinstance(data, dict):
            logger.warning("[OSRM] HTTP %s with no JSON body", status)
            raise ServiceUnavailable(f"routing failed with HTTP {status}")

        code = data.get("code")
        if code in self.NO_ROUTE_CODES:
            raise RouteNotFound(data.get("message") or f"no {request.mode.value} route found")
        if status >= 400 or code != "Ok":
            logger.warning("[OSRM] HTTP %s code=%s: %s", status, code, data.get("message"))
            raise ServiceUnavailable(f"OSRM error: {data.get('message', code or 'Unknown error')}")

        routes = data.get("routes") or []
        if not routes:
            raise RouteNotFound(f"no {request.mode.value} route found")
        r = routes[0]
        latlon = coords_polyline_to_latlon(r.get("geometry", ""))
        return RouteResult(
            geometry=tuple(Coordinate(lat, lon) for lat, lon in latlon),
            distance_m=float(r.get("distance", 0.0)),
            duration_s=float(r.get("duration", 0.0)),
            profile=profile,
            mode=request.mode,
        )


def make_router(settings: Optional[Settings] = None):
    settings = settings or Settings()
    provider = (settings.routing_provider or "").strip().lower()
    if provider == "ors" or (not provider and settings.ors_api_key):
        return OrsRouter(settings)
    if provider in ("", "osrm"):
        return OsrmRouter(settings)
    raise ValueError(f"unknown ROUTING_PROVIDER: {settings.routing_provider}")
