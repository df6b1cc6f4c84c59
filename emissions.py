# emissions.py
import logging
from typing import List, Optional

from http_utils import request_json
from lookup_config import Settings
from lookup_models import (Coordinate, EmissionsEstimate, EmissionsUnavailable, RouteProfile,
                           ServiceUnavailable)

logger = logging.getLogger(__name__)


class EmissionsClient:
    """
    Client for the external CO2 backend (POST {base}/route).

    Tries the configured base URL, or the fixed candidate list in order, and
    remembers the first one that answers.
    """

    def __init__(self, http, settings: Optional[Settings] = None):
        self.http = http
        self.settings = settings or Settings()
        self.base_url: Optional[str] = None

    def _candidates(self) -> List[str]:
        urls = self.settings.emissions_urls()
        if self.base_url in urls:
            urls.remove(self.base_url)
            urls.insert(0, self.base_url)
        return urls

    async def estimate(self, origin: Coordinate, destination: Coordinate,
                       profile: RouteProfile) -> EmissionsEstimate:
        payload = {
            "start_lat": origin.latitude,
            "start_lon": origin.longitude,
            "end_lat": destination.latitude,
            "end_lon": destination.longitude,
            "mode": RouteProfile.parse(profile).value,
        }
        urls = self._candidates()
        if not urls:
            raise EmissionsUnavailable("no emissions backend configured")

        for base in urls:
            try:
                status, data = await request_json(self.http, "POST", f"{base}/route", tag="EMISSIONS",
                                                  timeout=self.settings.emissions_timeout_sec, json=payload)
            except ServiceUnavailable:
                continue
            if status >= 400:
                logger.warning("[EMISSIONS] %s answered HTTP %s", base, status)
                continue
            try:
                estimate = EmissionsEstimate(
                    estimated_g=float(data["co2_estimated_g"]),
                    recommendation=str(data.get("recommendation") or ""),
                )
            except (KeyError, TypeError, ValueError):
                logger.warning("[EMISSIONS] %s returned a malformed body: %r", base, data)
                continue
            self.base_url = base
            return estimate

        raise EmissionsUnavailable("emissions backend unreachable")
