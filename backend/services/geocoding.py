"""Reverse geocoding for neighborhood/borough labels (backfill only)."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"

NEIGHBORHOOD_OVERRIDES: Dict[str, str] = {
    "Central Park West Historic District": "Upper West Side",
    "Flatiron District": "Flatiron",
}


def normalize_neighborhood(name: str) -> str:
    return NEIGHBORHOOD_OVERRIDES.get(name, name)


@dataclass(frozen=True)
class LocationLabels:
    neighborhood: Optional[str] = None
    borough: Optional[str] = None

    @property
    def empty(self) -> bool:
        return not self.neighborhood and not self.borough


def parse_location_labels(payload: Any) -> LocationLabels:
    if not isinstance(payload, dict):
        return LocationLabels()
    results = payload.get("results")
    if not isinstance(results, list) or not results or not isinstance(results[0], dict):
        return LocationLabels()

    neighborhood = None
    borough = None
    for component in results[0].get("address_components") or []:
        if not isinstance(component, dict):
            continue
        types = component.get("types") or []
        long_name = component.get("long_name")
        if not isinstance(long_name, str) or not long_name.strip():
            continue
        if "neighborhood" in types:
            neighborhood = normalize_neighborhood(long_name.strip())
        if "sublocality_level_1" in types or "sublocality" in types:
            borough = long_name.strip()
    return LocationLabels(neighborhood=neighborhood, borough=borough)


class ReverseGeocoder:
    def __init__(self, http_client: httpx.AsyncClient, api_key: str) -> None:
        self._http = http_client
        self._api_key = api_key

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def lookup(self, latitude: float, longitude: float) -> LocationLabels:
        if not self.enabled:
            return LocationLabels()
        params = {
            "latlng": f"{latitude},{longitude}",
            "result_type": "neighborhood",
            "key": self._api_key,
        }
        try:
            response = await self._http.get(GEOCODE_URL, params=params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            logger.warning("Reverse geocode failed for (%s, %s): %s", latitude, longitude, exc)
            return LocationLabels()
        return parse_location_labels(payload)
