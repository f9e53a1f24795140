"""
View state for the map/list journal UI.

`JournalViewState` is a plain, single-threaded state machine: every user
input or network completion is one method call. Methods that need a
server write return the patch payload instead of sending it; the caller
(see `client.JournalSession`) persists it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from grouping import DishGroup, find_group, group_memories, order_groups_for_list

SWIPE_THRESHOLD_PX = 50.0

Memory = Dict[str, Any]
Patch = Dict[str, Any]


class ViewMode(str, Enum):
    MAP = "map"
    LIST = "list"


class ReadOnlyViewError(PermissionError):
    pass


class UploadInProgressError(RuntimeError):
    pass


def swipe_step(delta_x: float, threshold: float = SWIPE_THRESHOLD_PX) -> int:
    """+1 for a leftward drag past the threshold, -1 for rightward, else 0."""
    if delta_x < -threshold:
        return 1
    if delta_x > threshold:
        return -1
    return 0


@dataclass
class MarkerCursor:
    """Which member of a multi-dish marker is on show."""

    size: int
    index: int = 0

    def step(self, delta: int) -> int:
        self.index = max(0, min(self.size - 1, self.index + delta))
        return self.index

    def swipe(self, delta_x: float) -> int:
        return self.step(swipe_step(delta_x))

    def reset(self) -> None:
        self.index = 0


@dataclass
class ClickEvent:
    """
    A pointer click on the map. Marker handlers run first and stop
    propagation; the background handler only sees unstopped events.
    """

    memory_id: Optional[int] = None
    propagation_stopped: bool = False

    def stop_propagation(self) -> None:
        self.propagation_stopped = True


@dataclass
class FullscreenViewer:
    images: List[str] = field(default_factory=list)
    index: int = 0
    is_open: bool = False

    def open(self, images: Sequence[str], start_index: int = 0) -> None:
        if not images:
            raise ValueError("Viewer needs at least one image")
        self.images = list(images)
        self.index = max(0, min(len(self.images) - 1, start_index))
        self.is_open = True

    def close(self) -> None:
        self.is_open = False
        self.images = []
        self.index = 0

    @property
    def current(self) -> Optional[str]:
        return self.images[self.index] if self.is_open else None

    def step(self, delta: int) -> int:
        if self.is_open:
            self.index = max(0, min(len(self.images) - 1, self.index + delta))
        return self.index

    def swipe(self, delta_x: float) -> int:
        return self.step(swipe_step(delta_x))

    def tap(self, x: float, width: float) -> None:
        """Left third: previous. Middle third: close. Right third: next."""
        if not self.is_open or width <= 0:
            return
        if x < width / 3:
            self.step(-1)
        elif x < 2 * width / 3:
            self.close()
        else:
            self.step(1)

    def handle_key(self, key: str) -> None:
        if not self.is_open:
            return
        if key in {"Escape", "Esc", "Cancel"}:
            self.close()
        elif key == "ArrowLeft":
            self.step(-1)
        elif key == "ArrowRight":
            self.step(1)


@dataclass
class EditBuffers:
    """Local copies of the editable fields of the selected record."""

    memory_id: int
    tags: List[str] = field(default_factory=list)
    note: str = ""
    dish_name: str = ""
    tag_input: str = ""
    seeded_note: str = ""
    seeded_dish_name: str = ""

    @classmethod
    def seed(cls, memory: Memory) -> "EditBuffers":
        note = memory.get("personal_note") or ""
        dish_name = memory.get("dish_name") or ""
        return cls(
            memory_id=memory["id"],
            tags=list(memory.get("friend_tags") or []),
            note=note,
            dish_name=dish_name,
            seeded_note=note,
            seeded_dish_name=dish_name,
        )

    def tags_patch(self) -> Patch:
        return {"friend_tags": list(self.tags) if self.tags else None}

    def add_tag(self, raw: Optional[str] = None) -> Optional[Patch]:
        value = (self.tag_input if raw is None else raw).strip()
        if not value or value in self.tags:
            return None
        self.tags.append(value)
        self.tag_input = ""
        return self.tags_patch()

    def remove_tag(self, tag: str) -> Optional[Patch]:
        if tag not in self.tags:
            return None
        self.tags = [existing for existing in self.tags if existing != tag]
        return self.tags_patch()

    def blur_note(self) -> Optional[Patch]:
        if self.note == self.seeded_note:
            return None
        self.seeded_note = self.note
        return {"personal_note": self.note or None}

    def blur_dish_name(self) -> Optional[Patch]:
        if self.dish_name.strip() == self.seeded_dish_name.strip():
            return None
        self.seeded_dish_name = self.dish_name
        return {"dish_name": self.dish_name.strip() or None}


@dataclass
class PendingUpload:
    """A freshly uploaded record awaiting confirmation of AI names."""

    memory: Memory
    nearby_restaurants: List[str] = field(default_factory=list)
    dish_name: str = ""
    restaurant_name: str = ""

    @classmethod
    def from_upload(cls, memory: Memory, nearby_restaurants: Sequence[str]) -> "PendingUpload":
        return cls(
            memory=memory,
            nearby_restaurants=list(nearby_restaurants),
            dish_name=memory.get("dish_name") or "",
            restaurant_name=memory.get("restaurant_name") or "",
        )

    def confirmation_patch(self) -> Optional[Patch]:
        patch: Patch = {}
        dish_name = self.dish_name.strip()
        restaurant_name = self.restaurant_name.strip()
        if dish_name != (self.memory.get("dish_name") or ""):
            patch["dish_name"] = dish_name or None
        if restaurant_name != (self.memory.get("restaurant_name") or ""):
            patch["restaurant_name"] = restaurant_name or None
        return patch or None


class JournalViewState:
    def __init__(self, read_only: bool = False) -> None:
        self.read_only = read_only
        self.memories: List[Memory] = []
        self.groups: List[DishGroup] = []
        self.selected_id: Optional[int] = None
        self.sheet_expanded = False
        self.view_mode = ViewMode.MAP
        self.marker_cursors: Dict[str, MarkerCursor] = {}
        self.viewer = FullscreenViewer()
        self.edits: Optional[EditBuffers] = None
        self.pending: Optional[PendingUpload] = None
        self.map_center: Optional[Tuple[float, float]] = None
        self.uploading = False
        self.error: Optional[str] = None

    # -- records -------------------------------------------------------------

    def _regroup(self) -> None:
        self.groups = group_memories(self.memories)
        cursors: Dict[str, MarkerCursor] = {}
        for group in self.groups:
            cursor = self.marker_cursors.get(group.key)
            if cursor is None:
                cursor = MarkerCursor(size=group.size)
            else:
                cursor.size = group.size
                cursor.step(0)
            cursors[group.key] = cursor
        self.marker_cursors = cursors
        if self.selected_id is not None and self.selected_memory is None:
            self._set_selection(None)

    @property
    def list_groups(self) -> List[DishGroup]:
        return order_groups_for_list(self.groups)

    @property
    def selected_memory(self) -> Optional[Memory]:
        for memory in self.memories:
            if memory["id"] == self.selected_id:
                return memory
        return None

    @property
    def selected_group(self) -> Optional[DishGroup]:
        return find_group(self.groups, self.selected_id)

    def load(self, memories: Sequence[Memory]) -> None:
        self.memories = list(memories)
        self._regroup()
        if self.memories:
            first = self.memories[0]
            self.map_center = (float(first["latitude"]), float(first["longitude"]))

    def replace_memory(self, updated: Memory) -> None:
        self.memories = [
            updated if memory["id"] == updated["id"] else memory for memory in self.memories
        ]
        self._regroup()

    def merge_memory(self, memory: Memory) -> None:
        self.memories = [memory] + [m for m in self.memories if m["id"] != memory["id"]]
        self._regroup()

    # -- selection -----------------------------------------------------------

    def _set_selection(self, memory_id: Optional[int]) -> None:
        previous_group = self.selected_group
        self.selected_id = memory_id
        memory = self.selected_memory
        if memory is None:
            self.selected_id = None
            self.sheet_expanded = False
            self.edits = None
        elif self.edits is None or self.edits.memory_id != memory["id"]:
            self.edits = EditBuffers.seed(memory)

        current_group = self.selected_group
        if previous_group is not None and (
            current_group is None or current_group.key != previous_group.key
        ):
            cursor = self.marker_cursors.get(previous_group.key)
            if cursor is not None:
                cursor.reset()

    def select(self, memory_id: Optional[int]) -> None:
        """Tapping the selected record again deselects it."""
        if memory_id is None or memory_id == self.selected_id:
            self._set_selection(None)
        else:
            self._set_selection(memory_id)

    def clear_selection(self) -> None:
        self._set_selection(None)

    def handle_click(self, event: ClickEvent) -> None:
        if event.memory_id is not None:
            self.select(event.memory_id)
            event.stop_propagation()
        if not event.propagation_stopped:
            self.clear_selection()

    def swipe_marker(self, group_key: str, delta_x: float) -> Optional[Memory]:
        """Move a multi-dish marker to its neighbouring dish, if any."""
        group = next((g for g in self.groups if g.key == group_key), None)
        if group is None:
            return None
        cursor = self.marker_cursors[group_key]
        if group.size > 1:
            cursor.swipe(delta_x)
        shown = group.memories[cursor.index]
        selected_group = self.selected_group
        if selected_group is not None and selected_group.key == group_key:
            self._set_selection(shown["id"])
        return shown

    def marker_memory(self, group_key: str) -> Optional[Memory]:
        group = next((g for g in self.groups if g.key == group_key), None)
        if group is None:
            return None
        return group.memories[self.marker_cursors[group_key].index]

    # -- sheet, mode, viewer ------------------------------------------------

    def toggle_sheet(self) -> None:
        if self.selected_id is not None:
            self.sheet_expanded = not self.sheet_expanded

    def set_view_mode(self, mode: ViewMode) -> None:
        self.view_mode = ViewMode(mode)

    def toggle_view_mode(self) -> None:
        self.view_mode = ViewMode.LIST if self.view_mode == ViewMode.MAP else ViewMode.MAP

    def open_viewer(self, images: Sequence[str], start_index: int = 0) -> None:
        self.viewer.open(images, start_index)

    def open_viewer_for_group(self, group_key: str) -> None:
        group = next((g for g in self.groups if g.key == group_key), None)
        if group is None:
            raise KeyError(group_key)
        images = [memory["cropped_image_url"] for memory in group.memories]
        self.viewer.open(images, self.marker_cursors[group_key].index)

    # -- edits ---------------------------------------------------------------

    def _require_writable(self) -> None:
        if self.read_only:
            raise ReadOnlyViewError("This journal is shared read-only")

    def _apply_locally(self, patch: Patch) -> None:
        memory = self.selected_memory
        if memory is not None:
            self.replace_memory({**memory, **patch})

    def _edit(self, action) -> Optional[Tuple[int, Patch]]:
        self._require_writable()
        if self.edits is None:
            return None
        patch = action(self.edits)
        if patch is None:
            return None
        self._apply_locally(patch)
        return self.edits.memory_id, patch

    def add_tag(self, raw: Optional[str] = None) -> Optional[Tuple[int, Patch]]:
        return self._edit(lambda edits: edits.add_tag(raw))

    def remove_tag(self, tag: str) -> Optional[Tuple[int, Patch]]:
        return self._edit(lambda edits: edits.remove_tag(tag))

    def blur_note(self) -> Optional[Tuple[int, Patch]]:
        return self._edit(lambda edits: edits.blur_note())

    def blur_dish_name(self) -> Optional[Tuple[int, Patch]]:
        return self._edit(lambda edits: edits.blur_dish_name())

    # -- upload & pending confirmation ---------------------------------------

    def begin_upload(self) -> None:
        self._require_writable()
        if self.uploading:
            raise UploadInProgressError("An upload is already in progress")
        self.uploading = True
        self.error = None

    def finish_upload(self, memory: Memory, nearby_restaurants: Sequence[str]) -> PendingUpload:
        self.uploading = False
        self.pending = PendingUpload.from_upload(memory, nearby_restaurants)
        return self.pending

    def fail_upload(self, message: str) -> None:
        self.uploading = False
        self.error = message or "Upload failed"

    def confirmation_patch(self) -> Optional[Tuple[int, Patch]]:
        if self.pending is None:
            return None
        patch = self.pending.confirmation_patch()
        if patch is None:
            return None
        return self.pending.memory["id"], patch

    def complete_pending(self, memory: Optional[Memory] = None) -> Optional[Memory]:
        """Merge the confirmed record, select it and centre the map on it."""
        if self.pending is None:
            return None
        confirmed = memory if memory is not None else self.pending.memory
        self.pending = None
        self.merge_memory(confirmed)
        self._set_selection(confirmed["id"])
        self.map_center = (float(confirmed["latitude"]), float(confirmed["longitude"]))
        return confirmed

    def dismiss_error(self) -> None:
        self.error = None
