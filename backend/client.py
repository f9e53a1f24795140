"""
HTTP client for the Food Memory API and the session that drives a
`JournalViewState` against it.
"""

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple, Union

import httpx

from photo_metadata import PhotoMetadata, PhotoMetadataError, read_photo_metadata
from presentation import JournalViewState, Patch

logger = logging.getLogger(__name__)

CONFIRM_FAILED_MESSAGE = "Failed to save names"


class MemoryApiError(RuntimeError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    detail = payload.get("detail") if isinstance(payload, dict) else None
    if isinstance(detail, dict):
        return str(detail.get("error") or detail)
    return str(detail or payload)


class MemoryApiClient:
    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers = {"X-API-Key": api_key} if api_key else {}
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=base_url, headers=headers)
        if http_client is not None and api_key:
            self._http.headers.update(headers)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "MemoryApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @staticmethod
    def _checked(response: httpx.Response) -> Any:
        if response.status_code >= 400:
            raise MemoryApiError(response.status_code, _error_message(response))
        return response.json()

    async def list_memories(self) -> List[Dict[str, Any]]:
        response = await self._http.get("/memories")
        return self._checked(response)

    async def upload(
        self,
        image: bytes,
        filename: str,
        latitude: float,
        longitude: float,
        photo_taken_at: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        content_type = content_type or mimetypes.guess_type(filename)[0] or "image/jpeg"
        data = {"latitude": repr(float(latitude)), "longitude": repr(float(longitude))}
        if photo_taken_at:
            data["photoTakenAt"] = photo_taken_at
        response = await self._http.post(
            "/upload",
            data=data,
            files={"original": (filename, image, content_type)},
        )
        return self._checked(response)

    async def patch_memory(self, memory_id: int, patch: Patch) -> Dict[str, Any]:
        response = await self._http.patch(f"/memories/{memory_id}", json=patch)
        return self._checked(response)


class JournalSession:
    """
    Couples the view state with the API. Tag and note edits are applied
    locally first and persisted in the background; the server's answer
    then replaces the local copy.
    """

    def __init__(self, api: MemoryApiClient, state: Optional[JournalViewState] = None) -> None:
        self.api = api
        self.state = state or JournalViewState()
        self._background: Set[asyncio.Task] = set()
        self._save_lock = asyncio.Lock()

    async def load(self) -> None:
        try:
            self.state.load(await self.api.list_memories())
        except (httpx.HTTPError, MemoryApiError) as exc:
            logger.warning("Failed to fetch memories: %s", exc)
            self.state.error = "Failed to load memories"

    async def upload_photo(self, path: Union[str, Path]) -> bool:
        """Read EXIF, upload, and hold the new record as pending."""
        self.state.begin_upload()
        path = Path(path)
        try:
            metadata: PhotoMetadata = await asyncio.to_thread(read_photo_metadata, path)
            image = await asyncio.to_thread(path.read_bytes)
            created = await self.api.upload(
                image,
                path.name,
                metadata.latitude,
                metadata.longitude,
                photo_taken_at=metadata.taken_at_iso,
            )
        except (PhotoMetadataError, MemoryApiError) as exc:
            self.state.fail_upload(str(exc))
            return False
        except (httpx.HTTPError, OSError) as exc:
            logger.warning("Upload failed: %s", exc)
            self.state.fail_upload("Upload failed")
            return False

        nearby = created.pop("nearby_restaurants", []) or []
        self.state.finish_upload(created, nearby)
        return True

    async def confirm_pending(
        self, dish_name: Optional[str] = None, restaurant_name: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        pending = self.state.pending
        if pending is None:
            return None
        if dish_name is not None:
            pending.dish_name = dish_name
        if restaurant_name is not None:
            pending.restaurant_name = restaurant_name

        confirmed = None
        change = self.state.confirmation_patch()
        if change is not None:
            memory_id, patch = change
            try:
                confirmed = await self.api.patch_memory(memory_id, patch)
            except (httpx.HTTPError, MemoryApiError) as exc:
                # The record stays pending so the user can retry.
                logger.warning("Failed to save confirmed names: %s", exc)
                self.state.error = CONFIRM_FAILED_MESSAGE
                return None
        self.state.dismiss_error()
        return self.state.complete_pending(confirmed)

    def _persist(self, change: Optional[Tuple[int, Patch]]) -> None:
        if change is None:
            return
        task = asyncio.get_running_loop().create_task(self._send_patch(*change))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_patch(self, memory_id: int, patch: Patch) -> None:
        # Saves go out one at a time, in the order the edits were made.
        async with self._save_lock:
            try:
                updated = await self.api.patch_memory(memory_id, patch)
            except (httpx.HTTPError, MemoryApiError) as exc:
                logger.warning("Failed to save memory %s: %s", memory_id, exc)
                return
            self.state.replace_memory(updated)

    def add_tag(self, raw: Optional[str] = None) -> None:
        self._persist(self.state.add_tag(raw))

    def remove_tag(self, tag: str) -> None:
        self._persist(self.state.remove_tag(tag))

    def blur_note(self) -> None:
        self._persist(self.state.blur_note())

    def blur_dish_name(self) -> None:
        self._persist(self.state.blur_dish_name())

    async def drain(self) -> None:
        """Wait for background saves still in flight."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
