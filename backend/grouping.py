"""
Proximity grouping of memories into map markers.

Records that share an exact restaurant name and sit within GROUP_RADIUS_M
of a group's first record share one marker. Records without a restaurant
are always their own marker. Groups are rebuilt from scratch whenever the
record list changes.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional, Sequence

EARTH_RADIUS_M = 6_371_000.0
GROUP_RADIUS_M = 50.0

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance on a spherical Earth."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text_value = str(value).strip()
        if not text_value:
            return None
        try:
            parsed = datetime.fromisoformat(text_value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def experienced_at(memory: Mapping[str, Any]) -> datetime:
    """Capture time when known, else creation time."""
    return (
        _parse_timestamp(memory.get("photo_taken_at"))
        or _parse_timestamp(memory.get("created_at"))
        or _EPOCH
    )


@dataclass
class DishGroup:
    key: str
    restaurant_name: Optional[str]
    latitude: float
    longitude: float
    memories: List[Mapping[str, Any]] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.memories)

    @property
    def memory_ids(self) -> List[int]:
        return [memory["id"] for memory in self.memories]

    @property
    def latest_experienced_at(self) -> datetime:
        return max((experienced_at(memory) for memory in self.memories), default=_EPOCH)

    def contains(self, memory_id: Optional[int]) -> bool:
        return memory_id is not None and memory_id in self.memory_ids


def _group_key(restaurant_name: str, latitude: float, longitude: float) -> str:
    return f"{restaurant_name}|{latitude}|{longitude}"


def group_memories(
    memories: Iterable[Mapping[str, Any]], radius_m: float = GROUP_RADIUS_M
) -> List[DishGroup]:
    """
    Marker-order groups: a group appears where its first record appears
    in `memories` (expected most-recent-first).
    """
    groups: List[DishGroup] = []
    for memory in memories:
        latitude = float(memory["latitude"])
        longitude = float(memory["longitude"])
        restaurant_name = memory.get("restaurant_name")

        if not restaurant_name:
            groups.append(
                DishGroup(
                    key=f"memory:{memory['id']}",
                    restaurant_name=None,
                    latitude=latitude,
                    longitude=longitude,
                    memories=[memory],
                )
            )
            continue

        for group in groups:
            if group.restaurant_name != restaurant_name:
                continue
            if haversine_meters(group.latitude, group.longitude, latitude, longitude) <= radius_m:
                group.memories.append(memory)
                break
        else:
            groups.append(
                DishGroup(
                    key=_group_key(restaurant_name, latitude, longitude),
                    restaurant_name=restaurant_name,
                    latitude=latitude,
                    longitude=longitude,
                    memories=[memory],
                )
            )
    return groups


def order_groups_for_list(groups: Sequence[DishGroup]) -> List[DishGroup]:
    """Most recently experienced group first; ties keep marker order."""
    return sorted(groups, key=lambda group: group.latest_experienced_at, reverse=True)


def find_group(groups: Sequence[DishGroup], memory_id: Optional[int]) -> Optional[DishGroup]:
    for group in groups:
        if group.contains(memory_id):
            return group
    return None
