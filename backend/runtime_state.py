"""
Process-wide collaborators for the Food Memory API.

`RuntimeState` owns the SQLite client, the shared outbound HTTP client and
every service built on top of them. The app lifespan opens it once with
`ensure_started()` and closes it with `shutdown()`; routes receive it
through the `get_runtime` dependency, which tests override with a state
assembled from fakes.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import httpx

from config import Settings
from db import SQLiteClient
from services import (
    BackgroundRemover,
    DishIdentifier,
    IngestionPipeline,
    LocationBackfill,
    MemoryUpdater,
    PlacesClient,
    ReverseGeocoder,
    build_blob_store,
)


class RuntimeNotStarted(RuntimeError):
    pass


class RuntimeState:
    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        sqlite_client: Optional[SQLiteClient] = None,
        pipeline: Optional[IngestionPipeline] = None,
        updater: Optional[MemoryUpdater] = None,
        backfill: Optional[LocationBackfill] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings
        self.sqlite_client = sqlite_client
        self.pipeline = pipeline
        self.updater = updater
        self.backfill = backfill
        self.http_client = http_client
        self._start_lock = asyncio.Lock()

    @property
    def started(self) -> bool:
        return self.sqlite_client is not None

    @property
    def memories_limit(self) -> int:
        return self.settings.memories_limit if self.settings else 100

    async def ensure_started(self, settings: Settings) -> None:
        async with self._start_lock:
            if self.started:
                return
            sqlite_client = SQLiteClient(settings.database_url)
            await sqlite_client.init_db()

            http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.http_timeout_sec))
            places = PlacesClient(
                http_client,
                settings.places_api_key,
                nearby_radius_m=settings.nearby_radius_m,
                text_search_radius_m=settings.place_link_radius_m,
            )
            blob_store = build_blob_store(
                settings.blob_backend,
                root=settings.blob_root,
                public_base_url=settings.blob_public_base_url,
                bucket=settings.s3_bucket,
                region=settings.s3_region,
            )

            self.settings = settings
            self.http_client = http_client
            self.sqlite_client = sqlite_client
            self.pipeline = IngestionPipeline(
                store=sqlite_client,
                places=places,
                background_remover=BackgroundRemover(http_client, settings.remove_bg_api_key),
                identifier=DishIdentifier(
                    http_client,
                    api_base=settings.vision_api_base,
                    api_key=settings.vision_api_key,
                    model=settings.vision_model,
                ),
                blob_store=blob_store,
            )
            self.updater = MemoryUpdater(sqlite_client, places)
            self.backfill = LocationBackfill(
                sqlite_client,
                ReverseGeocoder(http_client, settings.places_api_key),
                delay_sec=settings.backfill_delay_sec,
            )

    async def shutdown(self) -> None:
        async with self._start_lock:
            if self.http_client is not None:
                await self.http_client.aclose()
            if self.sqlite_client is not None:
                await self.sqlite_client.close()
            self.http_client = None
            self.sqlite_client = None
            self.pipeline = None
            self.updater = None
            self.backfill = None


runtime_state = RuntimeState()


def get_runtime() -> RuntimeState:
    if not runtime_state.started:
        raise RuntimeNotStarted("Runtime state is not started")
    return runtime_state
