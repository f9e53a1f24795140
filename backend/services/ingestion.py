"""
Upload ingestion pipeline.

    validate -> (nearby places || background removal) -> identification
             -> place-link from the chosen candidate -> blobs -> record

Everything between validation and persistence is best-effort: failures
there are logged as degrade reasons and replaced by nulls or the original
image. Validation errors and persistence errors propagate.
"""

import asyncio
import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from .background import BackgroundRemovalResult, BackgroundRemover
from .blobs import BlobStore, guess_extension
from .places import PlaceCandidate, PlacesClient, build_place_link, find_candidate
from .vision import DishIdentifier, Identification

logger = logging.getLogger(__name__)


class UploadValidationError(ValueError):
    """Client-fixable upload problem; nothing has been written."""


@dataclass(frozen=True)
class UploadedImage:
    data: bytes
    filename: str = "image.jpg"
    content_type: str = "image/jpeg"


@dataclass
class IngestionResult:
    memory: Dict[str, Any]
    candidates: List[PlaceCandidate]
    degrade_reasons: List[str] = field(default_factory=list)

    @property
    def nearby_restaurants(self) -> List[str]:
        return [candidate.name for candidate in self.candidates]


def parse_coordinate(raw: Any, *, name: str, limit: float) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise UploadValidationError(f"Invalid {name}: {raw!r}") from None
    if not math.isfinite(value):
        raise UploadValidationError(f"Invalid {name}: {raw!r}")
    if not -limit <= value <= limit:
        raise UploadValidationError(f"{name} out of range [-{limit:g}, {limit:g}]: {value}")
    return value


def parse_capture_timestamp(raw: Any) -> Optional[datetime]:
    """ISO-8601 capture time; naive values are taken as UTC."""
    if raw is None:
        return None
    if isinstance(raw, datetime):
        parsed = raw
    else:
        text_value = str(raw).strip()
        if not text_value:
            return None
        try:
            parsed = datetime.fromisoformat(text_value.replace("Z", "+00:00"))
        except ValueError:
            raise UploadValidationError(f"Invalid photo timestamp: {raw!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def resolve_restaurant(
    identification: Identification, candidates: List[PlaceCandidate]
) -> Optional[PlaceCandidate]:
    """
    With no candidates there is never a restaurant. Otherwise the model's
    choice wins when it names a candidate, and the first candidate is used
    for every other outcome (unparseable reply, failed call, off-list name).
    """
    if not candidates:
        return None
    chosen = find_candidate(candidates, identification.restaurant_name)
    return chosen if chosen is not None else candidates[0]


def _blob_stamp() -> str:
    return f"{time.time_ns() // 1_000_000}-{uuid.uuid4().hex[:8]}"


class IngestionPipeline:
    def __init__(
        self,
        store,
        places: PlacesClient,
        background_remover: BackgroundRemover,
        identifier: DishIdentifier,
        blob_store: BlobStore,
        stamp_factory: Callable[[], str] = _blob_stamp,
    ) -> None:
        self.store = store
        self.places = places
        self.background_remover = background_remover
        self.identifier = identifier
        self.blob_store = blob_store
        self._stamp_factory = stamp_factory

    @staticmethod
    def validate(
        image: Optional[UploadedImage], latitude: Any, longitude: Any
    ) -> Tuple[UploadedImage, float, float]:
        if image is None or not image.data:
            raise UploadValidationError("Missing image or location data")
        if latitude is None or longitude is None:
            raise UploadValidationError("Missing image or location data")
        lat = parse_coordinate(latitude, name="latitude", limit=90.0)
        lon = parse_coordinate(longitude, name="longitude", limit=180.0)
        return image, lat, lon

    async def _lookup_and_remove(
        self, image: UploadedImage, latitude: float, longitude: float, degrade_reasons: List[str]
    ) -> Tuple[List[PlaceCandidate], BackgroundRemovalResult]:
        places_outcome, removal_outcome = await asyncio.gather(
            self.places.nearby(latitude, longitude),
            self.background_remover.remove(image.data, image.filename),
            return_exceptions=True,
        )

        if isinstance(places_outcome, Exception):
            logger.warning("Nearby place lookup raised: %s", places_outcome)
            degrade_reasons.append("place_lookup_failed")
            candidates: List[PlaceCandidate] = []
        else:
            candidates = list(places_outcome)
        if not candidates:
            degrade_reasons.append("no_nearby_places")

        if isinstance(removal_outcome, Exception):
            logger.warning("Background removal raised: %s", removal_outcome)
            removal = BackgroundRemovalResult(errors=["background_removal_failed"])
        else:
            removal = removal_outcome
        degrade_reasons.extend(removal.errors if not removal.ok else [])
        return candidates, removal

    async def _identify(
        self, image: bytes, content_type: str, candidates: List[PlaceCandidate], degrade_reasons: List[str]
    ) -> Identification:
        try:
            identification = await self.identifier.identify(
                image, [candidate.name for candidate in candidates], content_type=content_type
            )
        except Exception as exc:
            logger.warning("Dish identification raised: %s", exc)
            identification = Identification(None, None, "failed")
        if identification.status != "parsed":
            degrade_reasons.append(f"identification_{identification.status}")
        return identification

    async def _store_images(
        self, image: UploadedImage, removal: BackgroundRemovalResult
    ) -> Tuple[str, str]:
        stamp = self._stamp_factory()
        original_key = f"originals/{stamp}.{guess_extension(image.filename)}"
        if not removal.ok:
            original_url = await self.blob_store.put(original_key, image.data, image.content_type)
            return original_url, original_url
        original_url, display_url = await asyncio.gather(
            self.blob_store.put(original_key, image.data, image.content_type),
            self.blob_store.put(f"cropped/{stamp}.png", removal.image, "image/png"),
        )
        return original_url, display_url

    async def ingest(
        self,
        image: Optional[UploadedImage],
        latitude: Any,
        longitude: Any,
        photo_taken_at: Any = None,
    ) -> IngestionResult:
        image, lat, lon = self.validate(image, latitude, longitude)
        taken_at = parse_capture_timestamp(photo_taken_at)
        degrade_reasons: List[str] = []

        candidates, removal = await self._lookup_and_remove(image, lat, lon, degrade_reasons)

        display_bytes = removal.image if removal.ok else image.data
        display_type = "image/png" if removal.ok else image.content_type
        identification = await self._identify(display_bytes, display_type, candidates, degrade_reasons)

        restaurant = resolve_restaurant(identification, candidates)
        place_link = build_place_link(restaurant.name, restaurant.place_id) if restaurant else None

        original_url, display_url = await self._store_images(image, removal)
        memory = await self.store.create_memory(
            original_image_url=original_url,
            cropped_image_url=display_url,
            latitude=lat,
            longitude=lon,
            photo_taken_at=taken_at,
            dish_name=identification.dish_name,
            restaurant_name=restaurant.name if restaurant else None,
            google_maps_url=place_link,
        )

        if degrade_reasons:
            logger.warning(
                "Memory %s stored with degraded enrichment: %s",
                memory.get("id"),
                ", ".join(degrade_reasons),
            )
        else:
            logger.info("Memory %s stored", memory.get("id"))
        return IngestionResult(memory=memory, candidates=candidates, degrade_reasons=degrade_reasons)
