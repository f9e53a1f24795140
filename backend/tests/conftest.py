from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi import FastAPI

from api import maintenance_router, memories_router, upload_router
from db import MUTABLE_FIELDS
from runtime_state import RuntimeState, get_runtime
from services import (
    BackgroundRemovalResult,
    Identification,
    IngestionPipeline,
    LocationBackfill,
    LocationLabels,
    MemoryUpdater,
    PlaceCandidate,
)


class FakeMemoryStore:
    """Dict-backed stand-in for SQLiteClient."""

    def __init__(self) -> None:
        self.rows: Dict[int, Dict[str, Any]] = {}
        self._next_id = 1
        self.fail_create: Optional[Exception] = None

    async def create_memory(self, **fields: Any) -> Dict[str, Any]:
        if self.fail_create is not None:
            raise self.fail_create
        taken_at = fields.pop("photo_taken_at", None)
        row = {
            "id": self._next_id,
            "created_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "photo_taken_at": taken_at.isoformat() if taken_at else None,
            "friend_tags": None,
            "personal_note": None,
            "neighborhood": None,
            "borough": None,
            **fields,
        }
        self.rows[row["id"]] = row
        self._next_id += 1
        return dict(row)

    async def get_memory(self, memory_id: int) -> Optional[Dict[str, Any]]:
        row = self.rows.get(memory_id)
        return dict(row) if row else None

    async def update_memory(self, memory_id: int, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        assert set(changes) <= set(MUTABLE_FIELDS)
        row = self.rows.get(memory_id)
        if row is None:
            return None
        row.update(changes)
        return dict(row)

    async def list_memories(self, limit: int = 100) -> List[Dict[str, Any]]:
        ordered = sorted(self.rows.values(), key=lambda row: row["id"], reverse=True)
        return [dict(row) for row in ordered[:limit]]

    async def get_table_stats(self) -> Dict[str, Any]:
        return {"total": len(self.rows), "max_id": max(self.rows) if self.rows else None}

    async def get_memories_missing_location(self) -> List[Dict[str, Any]]:
        return [
            {"id": row["id"], "latitude": row["latitude"], "longitude": row["longitude"]}
            for row in sorted(self.rows.values(), key=lambda row: row["id"])
            if row["neighborhood"] is None or row["borough"] is None
        ]

    async def merge_location_labels(self, memory_id: int, *, neighborhood, borough) -> bool:
        row = self.rows.get(memory_id)
        if row is None:
            return False
        row["neighborhood"] = row["neighborhood"] or neighborhood
        row["borough"] = row["borough"] or borough
        return True

    async def rename_neighborhood(self, old_name: str, new_name: str) -> int:
        count = 0
        for row in self.rows.values():
            if row["neighborhood"] == old_name:
                row["neighborhood"] = new_name
                count += 1
        return count


class FakePlaces:
    def __init__(self, candidates: Optional[List[PlaceCandidate]] = None) -> None:
        self.candidates = list(candidates or [])
        self.nearby_calls: List[tuple] = []
        self.link_calls: List[tuple] = []
        self.links: Dict[str, str] = {}

    async def nearby(self, latitude: float, longitude: float) -> List[PlaceCandidate]:
        self.nearby_calls.append((latitude, longitude))
        return list(self.candidates)

    async def lookup_place_link(self, restaurant_name: str, latitude: float, longitude: float):
        self.link_calls.append((restaurant_name, latitude, longitude))
        return self.links.get(restaurant_name)


class FakeRemover:
    def __init__(self, image: Optional[bytes] = None) -> None:
        self.image = image
        self.calls = 0

    async def remove(self, image: bytes, filename: str = "image.jpg") -> BackgroundRemovalResult:
        self.calls += 1
        if self.image is None:
            return BackgroundRemovalResult(
                errors=["background_removal_failed:auto/product", "background_removal_failed:auto/auto"]
            )
        return BackgroundRemovalResult(image=self.image, mode="auto/product")


class FakeIdentifier:
    def __init__(self, result: Optional[Identification] = None) -> None:
        self.result = result or Identification(None, None, "failed")
        self.calls: List[Dict[str, Any]] = []

    async def identify(self, image: bytes, candidate_names, content_type: str = "image/png") -> Identification:
        self.calls.append(
            {"image": image, "candidate_names": list(candidate_names), "content_type": content_type}
        )
        return self.result


class FakeBlobStore:
    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        self.objects[key] = data
        return f"https://blobs.test/{key}"


class FakeGeocoder:
    def __init__(self, labels: Optional[Dict[tuple, LocationLabels]] = None) -> None:
        self.labels = labels or {}
        self.calls: List[tuple] = []

    async def lookup(self, latitude: float, longitude: float) -> LocationLabels:
        self.calls.append((latitude, longitude))
        return self.labels.get((latitude, longitude), LocationLabels())


@pytest.fixture
def memory_store() -> FakeMemoryStore:
    return FakeMemoryStore()


@pytest.fixture
def places() -> FakePlaces:
    return FakePlaces()


@pytest.fixture
def remover() -> FakeRemover:
    return FakeRemover()


@pytest.fixture
def identifier() -> FakeIdentifier:
    return FakeIdentifier()


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def geocoder() -> FakeGeocoder:
    return FakeGeocoder()


@pytest.fixture
def pipeline(memory_store, places, remover, identifier, blob_store) -> IngestionPipeline:
    return IngestionPipeline(
        store=memory_store,
        places=places,
        background_remover=remover,
        identifier=identifier,
        blob_store=blob_store,
        stamp_factory=lambda: "1700000000000-test",
    )


@pytest.fixture
def runtime(memory_store, places, pipeline, geocoder) -> RuntimeState:
    return RuntimeState(
        sqlite_client=memory_store,
        pipeline=pipeline,
        updater=MemoryUpdater(memory_store, places),
        backfill=LocationBackfill(memory_store, geocoder, delay_sec=0.0),
    )


@pytest.fixture
def build_app(runtime, monkeypatch) -> Callable[[], FastAPI]:
    monkeypatch.setenv("FOOD_MEMORY_API_KEY", "journal-secret")
    monkeypatch.delenv("FOOD_MEMORY_ALLOW_INSECURE_LOCAL", raising=False)

    def _build() -> FastAPI:
        app = FastAPI()
        app.include_router(memories_router)
        app.include_router(upload_router)
        app.include_router(maintenance_router)
        app.dependency_overrides[get_runtime] = lambda: runtime
        return app

    return _build


AUTH_HEADERS = {"X-API-Key": "journal-secret"}


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return dict(AUTH_HEADERS)
