"""
Place search against the Google Places API (New).

Nearby search feeds the ingestion pipeline with restaurant candidates;
text search re-resolves the place-link when a user renames the restaurant
on an existing record.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

NEARBY_SEARCH_URL = "https://places.googleapis.com/v1/places:searchNearby"
TEXT_SEARCH_URL = "https://places.googleapis.com/v1/places:searchText"
PLACE_CATEGORIES = ("restaurant", "cafe", "bakery", "bar")
_FIELD_MASK = "places.id,places.displayName"


@dataclass(frozen=True)
class PlaceCandidate:
    name: str
    place_id: str


def build_place_link(name: str, place_id: str) -> str:
    return (
        "https://www.google.com/maps/search/?api=1"
        f"&query={quote(name, safe='')}&query_place_id={quote(place_id, safe='')}"
    )


def find_candidate(
    candidates: Sequence[PlaceCandidate], name: Optional[str]
) -> Optional[PlaceCandidate]:
    """Exact name match first, then a case-insensitive one."""
    if not name:
        return None
    for candidate in candidates:
        if candidate.name == name:
            return candidate
    folded = name.strip().casefold()
    for candidate in candidates:
        if candidate.name.strip().casefold() == folded:
            return candidate
    return None


def _parse_places(payload: Any) -> List[PlaceCandidate]:
    if not isinstance(payload, dict):
        return []
    places = payload.get("places")
    if not isinstance(places, list):
        return []

    candidates: List[PlaceCandidate] = []
    seen_ids = set()
    for place in places:
        if not isinstance(place, dict):
            continue
        place_id = place.get("id")
        display_name = place.get("displayName")
        name = display_name.get("text") if isinstance(display_name, dict) else None
        if not isinstance(place_id, str) or not place_id.strip():
            continue
        if not isinstance(name, str) or not name.strip():
            continue
        if place_id in seen_ids:
            continue
        seen_ids.add(place_id)
        candidates.append(PlaceCandidate(name=name.strip(), place_id=place_id.strip()))
    return candidates


class PlacesClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        *,
        nearby_radius_m: float = 50.0,
        text_search_radius_m: float = 5000.0,
        max_results: int = 10,
    ) -> None:
        self._http = http_client
        self._api_key = api_key
        self.nearby_radius_m = nearby_radius_m
        self.text_search_radius_m = text_search_radius_m
        self.max_results = max_results

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def _post(self, url: str, body: dict) -> Any:
        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self._api_key,
            "X-Goog-FieldMask": _FIELD_MASK,
        }
        response = await self._http.post(url, json=body, headers=headers)
        response.raise_for_status()
        return response.json()

    async def nearby(self, latitude: float, longitude: float) -> List[PlaceCandidate]:
        """Eateries within the nearby radius; empty on any failure."""
        if not self.enabled:
            return []
        body = {
            "includedTypes": list(PLACE_CATEGORIES),
            "maxResultCount": self.max_results,
            "rankPreference": "DISTANCE",
            "locationRestriction": {
                "circle": {
                    "center": {"latitude": latitude, "longitude": longitude},
                    "radius": self.nearby_radius_m,
                }
            },
        }
        try:
            payload = await self._post(NEARBY_SEARCH_URL, body)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            logger.warning("Nearby place search failed: %s", exc)
            return []
        return _parse_places(payload)

    async def lookup_place_link(
        self, restaurant_name: str, latitude: float, longitude: float
    ) -> Optional[str]:
        """
        Place-link for a text-search hit near the coordinate whose name
        matches `restaurant_name`; None when no hit carries that name.
        """
        if not self.enabled or not restaurant_name.strip():
            return None
        body = {
            "textQuery": restaurant_name,
            "maxResultCount": self.max_results,
            "locationBias": {
                "circle": {
                    "center": {"latitude": latitude, "longitude": longitude},
                    "radius": self.text_search_radius_m,
                }
            },
        }
        try:
            payload = await self._post(TEXT_SEARCH_URL, body)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            logger.warning("Place text search failed for %r: %s", restaurant_name, exc)
            return None
        match = find_candidate(_parse_places(payload), restaurant_name)
        if match is None:
            return None
        return build_place_link(restaurant_name, match.place_id)
