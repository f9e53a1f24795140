"""Background removal through the remove.bg HTTP API."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

REMOVE_BG_URL = "https://api.remove.bg/v1.0/removebg"

# (size, type) pairs tried in order; the first success wins.
REMOVAL_ATTEMPTS: Tuple[Tuple[str, str], ...] = (
    ("auto", "product"),
    ("auto", "auto"),
)


@dataclass
class BackgroundRemovalResult:
    image: Optional[bytes] = None
    mode: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.image is not None


class BackgroundRemover:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        attempts: Tuple[Tuple[str, str], ...] = REMOVAL_ATTEMPTS,
    ) -> None:
        self._http = http_client
        self._api_key = api_key
        self.attempts = attempts

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def _remove_once(
        self, image: bytes, filename: str, size: str, foreground_type: str
    ) -> bytes:
        response = await self._http.post(
            REMOVE_BG_URL,
            headers={"X-Api-Key": self._api_key},
            data={"size": size, "type": foreground_type, "format": "png"},
            files={"image_file": (filename, image, "application/octet-stream")},
        )
        if response.status_code != 200:
            raise ValueError(
                f"remove.bg returned {response.status_code}: {response.text[:200]}"
            )
        if not response.content:
            raise ValueError("remove.bg returned an empty body")
        return response.content

    async def remove(self, image: bytes, filename: str = "image.jpg") -> BackgroundRemovalResult:
        """
        Try each attempt in order. Never raises: a result without an image
        means the caller should display the original.
        """
        result = BackgroundRemovalResult()
        if not self.enabled:
            result.errors.append("background_removal_not_configured")
            return result

        for size, foreground_type in self.attempts:
            mode = f"{size}/{foreground_type}"
            try:
                result.image = await self._remove_once(image, filename, size, foreground_type)
                result.mode = mode
                return result
            except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
                logger.warning("Background removal (%s) failed: %s", mode, exc)
                result.errors.append(f"background_removal_failed:{mode}")
        return result
