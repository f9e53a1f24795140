"""
Partial updates of a memory record.

A patch is a mapping holding only the fields the caller sent. A key that
is absent leaves the column untouched; a key present with None clears it.
A restaurant rename re-resolves the place-link so that it never points at
a different restaurant than `restaurant_name`.
"""

from typing import Any, Dict, Iterable, List, Optional

from .places import PlacesClient
from .vision import DISH_NAME_MAX_CHARS

PATCHABLE_FIELDS = ("friend_tags", "personal_note", "dish_name", "restaurant_name")


def normalize_tags(tags: Optional[Iterable[Any]]) -> Optional[List[str]]:
    """Trimmed, non-empty, first occurrence kept; an empty result is None."""
    if tags is None:
        return None
    seen = set()
    normalized: List[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            continue
        value = tag.strip()
        if not value or value in seen:
            continue
        seen.add(value)
        normalized.append(value)
    return normalized or None


def _blank_to_none(value: Optional[str], limit: Optional[int] = None) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    return cleaned[:limit] if limit else cleaned


def normalize_patch(patch: Dict[str, Any]) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    if "friend_tags" in patch:
        changes["friend_tags"] = normalize_tags(patch["friend_tags"])
    if "personal_note" in patch:
        note = patch["personal_note"]
        changes["personal_note"] = note if note and note.strip() else None
    if "dish_name" in patch:
        changes["dish_name"] = _blank_to_none(patch["dish_name"], DISH_NAME_MAX_CHARS)
    if "restaurant_name" in patch:
        changes["restaurant_name"] = _blank_to_none(patch["restaurant_name"], 255)
    return changes


class MemoryUpdater:
    def __init__(self, store, places: PlacesClient) -> None:
        self.store = store
        self.places = places

    async def apply(self, memory_id: int, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Returns the updated record, or None when `memory_id` is unknown.

        The rename check is a read followed by a write; two concurrent
        renames of one record may interleave.
        """
        unknown = set(patch) - set(PATCHABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported fields: {sorted(unknown)}")
        changes = normalize_patch(patch)

        if "restaurant_name" in changes:
            existing = await self.store.get_memory(memory_id)
            if existing is None:
                return None
            new_name = changes["restaurant_name"]
            if new_name == existing.get("restaurant_name"):
                del changes["restaurant_name"]
            elif new_name is None:
                changes["google_maps_url"] = None
            else:
                changes["google_maps_url"] = await self.places.lookup_place_link(
                    new_name, existing["latitude"], existing["longitude"]
                )

        if not changes:
            return await self.store.get_memory(memory_id)
        return await self.store.update_memory(memory_id, changes)
