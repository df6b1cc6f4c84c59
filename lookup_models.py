# lookup_models.py
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Optional, Tuple


# ---------------------------
# Errors
# ---------------------------
class RouteLookupError(Exception):
    """Base class for every error raised by the route lookup client."""


class InvalidInput(RouteLookupError):
    """Empty place name, unknown profile or an operation called out of order."""


class PlaceNotFound(RouteLookupError):
    """Geocoding succeeded but returned no candidate for the text."""

    def __init__(self, text: str):
        super().__init__(f"no result found for {text}")
        self.text = text


class ServiceUnavailable(RouteLookupError):
    """Transport failure or non-success status from an external service."""


class RouteNotFound(RouteLookupError):
    """The routing service answered but has no route between the points."""


class EmissionsUnavailable(RouteLookupError):
    """The emissions backend could not produce an estimate. Never shown to the user."""


class Superseded(RouteLookupError):
    """A newer request replaced this one; its result was discarded."""


# ---------------------------
# Value types
# ---------------------------
@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def as_latlon(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)

    def as_lonlat(self) -> Tuple[float, float]:
        return (self.longitude, self.latitude)


@dataclass(frozen=True)
class PlaceCandidate:
    display_name: str
    latitude: float
    longitude: float

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, object]:
        return {"display_name": self.display_name, "lat": self.latitude, "lon": self.longitude}


class RouteProfile(str, Enum):
    ECO = "eco"
    FAST = "fast"

    @classmethod
    def parse(cls, value) -> "RouteProfile":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidInput(f"unknown route profile: {value!r}") from None

    @property
    def alternate(self) -> "RouteProfile":
        return RouteProfile.FAST if self is RouteProfile.ECO else RouteProfile.ECO


class TravelMode(str, Enum):
    DRIVING = "driving"
    CYCLING = "cycling"
    WALKING = "walking"


@dataclass(frozen=True)
class RouteRequest:
    """One concrete call to the routing provider."""

    mode: TravelMode
    preference: str = "fastest"            # "fastest" | "shortest"
    avoid_features: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RouteResult:
    geometry: Tuple[Coordinate, ...]
    distance_m: float
    duration_s: float
    profile: RouteProfile
    mode: Optional[TravelMode] = None

    def with_profile(self, profile: RouteProfile) -> "RouteResult":
        return replace(self, profile=profile)


@dataclass(frozen=True)
class Session:
    """
    Result of one successful calculation.

    ``routes`` always holds exactly the eco and the fast route, both for
    ``origin`` -> ``destination``. Instances are replaced, never mutated.
    """

    origin: Coordinate
    destination: Coordinate
    routes: Dict[RouteProfile, RouteResult]
    selected_profile: RouteProfile
    origin_label: str = ""
    destination_label: str = ""

    def __post_init__(self):
        if set(self.routes) != set(RouteProfile):
            raise ValueError("a session needs exactly the eco and the fast route")

    @property
    def selected(self) -> RouteResult:
        return self.routes[self.selected_profile]

    @property
    def alternate(self) -> RouteResult:
        return self.routes[self.selected_profile.alternate]

    def with_selected(self, profile: RouteProfile) -> "Session":
        return replace(self, selected_profile=profile)

    def to_dict(self) -> Dict[str, object]:
        return {
            "origin": {"lat": self.origin.latitude, "lon": self.origin.longitude, "label": self.origin_label},
            "destination": {"lat": self.destination.latitude, "lon": self.destination.longitude,
                            "label": self.destination_label},
            "selected_profile": self.selected_profile.value,
            "routes": {
                p.value: {
                    "distance_m": r.distance_m,
                    "duration_s": r.duration_s,
                    "mode": r.mode.value if r.mode else None,
                    "points": len(r.geometry),
                }
                for p, r in self.routes.items()
            },
        }


@dataclass(frozen=True)
class EmissionsEstimate:
    estimated_g: float
    recommendation: str


@dataclass
class RenderedView:
    html: str
    summary: Dict[str, object] = field(default_factory=dict)


# ---------------------------
# Utilities
# ---------------------------
def haversine_km(lat1, lon1, lat2, lon2):
    # return distance in kilometers
    R = 6371.0
    phi1 = math.radians(lat1); phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1); dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi/2)**2 + math.cos(phi1)*math.cos(phi2)*math.sin(dlambda/2)**2
    return R * 2 * math.asin(math.sqrt(a))


def distance_km(a: Coordinate, b: Coordinate) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)
