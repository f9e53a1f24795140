"""Out-of-band neighborhood/borough backfill."""

import asyncio
import logging
from typing import Any, Dict

from .geocoding import NEIGHBORHOOD_OVERRIDES, ReverseGeocoder

logger = logging.getLogger(__name__)


class LocationBackfill:
    def __init__(self, store, geocoder: ReverseGeocoder, delay_sec: float = 0.2) -> None:
        self.store = store
        self.geocoder = geocoder
        self.delay_sec = max(0.0, delay_sec)

    async def run(self) -> Dict[str, Any]:
        renamed = 0
        for old_name, new_name in NEIGHBORHOOD_OVERRIDES.items():
            renamed += await self.store.rename_neighborhood(old_name, new_name)

        rows = await self.store.get_memories_missing_location()
        updated = 0
        for index, row in enumerate(rows):
            labels = await self.geocoder.lookup(row["latitude"], row["longitude"])
            if not labels.empty:
                if await self.store.merge_location_labels(
                    row["id"], neighborhood=labels.neighborhood, borough=labels.borough
                ):
                    updated += 1
            if self.delay_sec and index < len(rows) - 1:
                await asyncio.sleep(self.delay_sec)

        logger.info(
            "Location backfill: %d candidates, %d updated, %d renamed",
            len(rows),
            updated,
            renamed,
        )
        return {"total": len(rows), "updated": updated, "renamed": renamed}
