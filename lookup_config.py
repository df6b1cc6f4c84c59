# lookup_config.py
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

# ---------------------------
# Config / Environment
# ---------------------------
ROUTING_PROVIDER = os.getenv("ROUTING_PROVIDER", "")            # "ors" | "osrm" | "" (auto)
ORS_API_KEY = os.getenv("ORS_API_KEY")                          # required for OpenRouteService
ORS_URL = os.getenv("ORS_URL", "https://api.openrouteservice.org")

# routing.openstreetmap.de runs one OSRM instance per travel mode
OSRM_BASE_URLS: Dict[str, str] = {
    "driving": os.getenv("OSRM_DRIVING_URL", "https://routing.openstreetmap.de/routed-car"),
    "cycling": os.getenv("OSRM_CYCLING_URL", "https://routing.openstreetmap.de/routed-bike"),
    "walking": os.getenv("OSRM_WALKING_URL", "https://routing.openstreetmap.de/routed-foot"),
}
# on routing.openstreetmap.de the profile segment stays "driving" for every instance
OSRM_PROFILE_SEGMENT = os.getenv("OSRM_PROFILE_SEGMENT", "driving")

NOMINATIM_URL = os.getenv("NOMINATIM_URL", "https://nominatim.openstreetmap.org")
GEOCODER_USER_AGENT = os.getenv("GEOCODER_USER_AGENT", "greenroutes-lookup/0.1")

# Emissions backend: a single configured URL, else the fixed candidates in order
EMISSIONS_BASE_URL = os.getenv("EMISSIONS_BASE_URL")
EMISSIONS_CANDIDATE_URLS: Tuple[str, ...] = (
    "http://127.0.0.1:8000",
    "https://greenroutes-backend.onrender.com",
)

HTTP_TIMEOUT_SEC = float(os.getenv("HTTP_TIMEOUT_SEC", "10"))
EMISSIONS_TIMEOUT_SEC = float(os.getenv("EMISSIONS_TIMEOUT_SEC", "3"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Open tabs kept by the web app; the least recently used one is closed beyond this
MAX_TABS = int(os.getenv("MAX_TABS", "200"))

# Hard cap on the eco fallback chain
MAX_FALLBACKS_LIMIT = 2


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return float(raw)


# ---------------------------
# Routing policy
# ---------------------------
@dataclass(frozen=True)
class RoutingPolicy:
    """
    All tunables for profile selection, fallbacks and caching.

    Notes:
    - eco routes between points closer than ``eco_cycling_max_km`` (straight
      line, Haversine) are requested as cycling routes; longer eco trips use
      driving with highways and tollways avoided.
    - ``eco_fallback_modes`` is tried in order when the eco request reports
      no route; only the first ``max_fallbacks`` entries are ever used.
    - ``cache_ttl_sec`` of None keeps cached results for the client lifetime.
    """

    eco_cycling_max_km: float = 20.0
    eco_fallback_modes: Tuple[str, ...] = ("walking",)
    max_fallbacks: int = 1
    eco_avoid_features: Tuple[str, ...] = ("highways", "tollways")

    cache_ttl_sec: Optional[float] = None

    suggestion_limit: int = 5
    debounce_seconds: float = 0.3
    language: str = "en"

    def validate(self) -> None:
        if self.eco_cycling_max_km < 0:
            raise ValueError("eco_cycling_max_km must be >= 0")

        if not 0 <= self.max_fallbacks <= MAX_FALLBACKS_LIMIT:
            raise ValueError(f"max_fallbacks must be between 0 and {MAX_FALLBACKS_LIMIT}")

        for mode in self.eco_fallback_modes:
            if mode not in OSRM_BASE_URLS:
                raise ValueError(f"unknown fallback mode: {mode}")

        if self.cache_ttl_sec is not None and self.cache_ttl_sec <= 0:
            raise ValueError("cache_ttl_sec must be > 0 or None")

        if self.suggestion_limit < 1:
            raise ValueError("suggestion_limit must be >= 1")

        if self.debounce_seconds < 0:
            raise ValueError("debounce_seconds must be >= 0")

    @property
    def fallback_chain(self) -> List[str]:
        return list(self.eco_fallback_modes[: self.max_fallbacks])


def default_policy() -> RoutingPolicy:
    """Policy built from the environment (ECO_CYCLING_MAX_KM, CACHE_TTL_SEC, GEOCODER_LANGUAGE)."""
    p = RoutingPolicy(
        eco_cycling_max_km=float(os.getenv("ECO_CYCLING_MAX_KM", "20")),
        cache_ttl_sec=_optional_float("CACHE_TTL_SEC"),
        language=os.getenv("GEOCODER_LANGUAGE", "en"),
    )
    p.validate()
    return p


@dataclass
class Settings:
    """Service endpoints and credentials; a snapshot of the module constants by default."""

    routing_provider: str = field(default_factory=lambda: ROUTING_PROVIDER)
    ors_api_key: Optional[str] = field(default_factory=lambda: ORS_API_KEY)
    ors_url: str = field(default_factory=lambda: ORS_URL)
    osrm_base_urls: Dict[str, str] = field(default_factory=lambda: dict(OSRM_BASE_URLS))
    osrm_profile_segment: str = field(default_factory=lambda: OSRM_PROFILE_SEGMENT)
    nominatim_url: str = field(default_factory=lambda: NOMINATIM_URL)
    user_agent: str = field(default_factory=lambda: GEOCODER_USER_AGENT)
    emissions_base_url: Optional[str] = field(default_factory=lambda: EMISSIONS_BASE_URL)
    emissions_candidate_urls: Tuple[str, ...] = EMISSIONS_CANDIDATE_URLS
    http_timeout_sec: float = field(default_factory=lambda: HTTP_TIMEOUT_SEC)
    emissions_timeout_sec: float = field(default_factory=lambda: EMISSIONS_TIMEOUT_SEC)

    def emissions_urls(self) -> List[str]:
        if self.emissions_base_url:
            return [self.emissions_base_url.rstrip("/")]
        return [u.rstrip("/") for u in self.emissions_candidate_urls]
