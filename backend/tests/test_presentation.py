from typing import Any, Dict, Optional

import pytest

from presentation import (
    ClickEvent,
    FullscreenViewer,
    JournalViewState,
    MarkerCursor,
    ReadOnlyViewError,
    UploadInProgressError,
    ViewMode,
    swipe_step,
)


def _memory(
    memory_id: int,
    restaurant: Optional[str] = "Katz's",
    latitude: float = 40.7222,
    **extra: Any,
) -> Dict[str, Any]:
    return {
        "id": memory_id,
        "latitude": latitude,
        "longitude": -73.9874,
        "restaurant_name": restaurant,
        "dish_name": f"dish {memory_id}",
        "created_at": f"2026-01-{10 - memory_id:02d}T12:00:00Z",
        "photo_taken_at": None,
        "cropped_image_url": f"https://blobs.test/cropped/{memory_id}.png",
        "friend_tags": None,
        "personal_note": None,
        **extra,
    }


def _state(*memories: Dict[str, Any], read_only: bool = False) -> JournalViewState:
    state = JournalViewState(read_only=read_only)
    state.load(list(memories))
    return state


def test_load_centers_on_most_recent() -> None:
    state = _state(_memory(1, latitude=40.0), _memory(2, latitude=41.0))
    assert state.map_center == (40.0, -73.9874)
    assert len(state.groups) == 2


def test_select_toggles_and_replaces() -> None:
    state = _state(_memory(1), _memory(2, restaurant=None))
    state.select(1)
    assert state.selected_id == 1
    state.select(2)
    assert state.selected_id == 2
    state.select(2)
    assert state.selected_id is None


def test_marker_click_is_not_cleared_by_map_click() -> None:
    state = _state(_memory(1))
    event = ClickEvent(memory_id=1)
    state.handle_click(event)
    assert event.propagation_stopped is True
    assert state.selected_id == 1

    state.handle_click(ClickEvent())
    assert state.selected_id is None


def test_clicking_selected_marker_deselects() -> None:
    state = _state(_memory(1))
    state.handle_click(ClickEvent(memory_id=1))
    state.handle_click(ClickEvent(memory_id=1))
    assert state.selected_id is None


def test_deselect_collapses_sheet_and_drops_edits() -> None:
    state = _state(_memory(1, friend_tags=["Sam"], personal_note="great"))
    state.select(1)
    assert state.edits.tags == ["Sam"]
    assert state.edits.note == "great"
    state.toggle_sheet()
    assert state.sheet_expanded is True
    state.clear_selection()
    assert state.sheet_expanded is False
    assert state.edits is None


def test_swipe_step_threshold() -> None:
    assert swipe_step(-50) == 0
    assert swipe_step(-51) == 1
    assert swipe_step(51) == -1
    assert swipe_step(10) == 0


def test_marker_cursor_clamps() -> None:
    cursor = MarkerCursor(size=3)
    assert cursor.swipe(-80) == 1
    assert cursor.swipe(-80) == 2
    assert cursor.swipe(-80) == 2
    assert cursor.swipe(80) == 1
    cursor.reset()
    assert cursor.index == 0


def test_multi_dish_marker_swipe_moves_selection_and_resets_on_deselect() -> None:
    state = _state(_memory(1), _memory(2), _memory(3, restaurant="Other", latitude=41.0))
    group = state.groups[0]
    assert group.memory_ids == [1, 2]

    state.select(1)
    shown = state.swipe_marker(group.key, -120)
    assert shown["id"] == 2
    assert state.selected_id == 2
    assert state.edits.memory_id == 2
    assert state.swipe_marker(group.key, -120)["id"] == 2

    state.select(3)
    assert state.marker_cursors[group.key].index == 0


def test_single_dish_marker_ignores_swipe() -> None:
    state = _state(_memory(1, restaurant=None))
    key = state.groups[0].key
    assert state.swipe_marker(key, -200)["id"] == 1
    assert state.marker_cursors[key].index == 0


def test_viewer_navigation_and_tap_zones() -> None:
    viewer = FullscreenViewer()
    viewer.open(["a", "b", "c"], start_index=1)
    viewer.tap(10, 300)
    assert viewer.current == "a"
    viewer.tap(290, 300)
    viewer.tap(290, 300)
    viewer.tap(290, 300)
    assert viewer.current == "c"
    viewer.swipe(70)
    assert viewer.current == "b"
    viewer.tap(150, 300)
    assert viewer.is_open is False


def test_viewer_closes_on_escape() -> None:
    viewer = FullscreenViewer()
    viewer.open(["a"], start_index=5)
    assert viewer.index == 0
    viewer.handle_key("Escape")
    assert viewer.is_open is False
    with pytest.raises(ValueError):
        viewer.open([])


def test_open_viewer_for_group_starts_at_cursor() -> None:
    state = _state(_memory(1), _memory(2))
    key = state.groups[0].key
    state.swipe_marker(key, -60)
    state.open_viewer_for_group(key)
    assert state.viewer.current == "https://blobs.test/cropped/2.png"


def test_tag_added_then_removed_persists_null() -> None:
    state = _state(_memory(1))
    state.select(1)
    memory_id, patch = state.add_tag("  Sam ")
    assert memory_id == 1
    assert patch == {"friend_tags": ["Sam"]}
    assert state.selected_memory["friend_tags"] == ["Sam"]
    assert state.add_tag("Sam") is None

    _, patch = state.remove_tag("Sam")
    assert patch == {"friend_tags": None}
    assert state.selected_memory["friend_tags"] is None


def test_note_commits_only_when_changed() -> None:
    state = _state(_memory(1, personal_note="good"))
    state.select(1)
    assert state.blur_note() is None
    state.edits.note = "so good"
    assert state.blur_note() == (1, {"personal_note": "so good"})
    assert state.blur_note() is None
    state.edits.note = ""
    assert state.blur_note() == (1, {"personal_note": None})


def test_read_only_view_refuses_edits_and_uploads() -> None:
    state = _state(_memory(1), read_only=True)
    state.select(1)
    with pytest.raises(ReadOnlyViewError):
        state.add_tag("Sam")
    with pytest.raises(ReadOnlyViewError):
        state.begin_upload()


def test_upload_pending_confirmation_flow() -> None:
    state = _state(_memory(1))
    state.begin_upload()
    with pytest.raises(UploadInProgressError):
        state.begin_upload()

    created = _memory(7, restaurant="Katz's", latitude=40.8)
    pending = state.finish_upload(created, ["Katz's", "Russ & Daughters"])
    assert state.uploading is False
    assert [m["id"] for m in state.memories] == [1]
    assert pending.restaurant_name == "Katz's"
    assert state.confirmation_patch() is None

    pending.restaurant_name = "Russ & Daughters"
    assert state.confirmation_patch() == (7, {"restaurant_name": "Russ & Daughters"})

    confirmed = state.complete_pending({**created, "restaurant_name": "Russ & Daughters"})
    assert state.pending is None
    assert state.memories[0]["id"] == 7
    assert state.selected_id == 7
    assert state.map_center == (40.8, -73.9874)
    assert confirmed["restaurant_name"] == "Russ & Daughters"


def test_failed_upload_sets_error() -> None:
    state = _state()
    state.begin_upload()
    state.fail_upload("No location data found in this photo.")
    assert state.uploading is False
    assert state.error.startswith("No location")
    state.dismiss_error()
    assert state.error is None


def test_view_mode_toggle() -> None:
    state = _state()
    assert state.view_mode == ViewMode.MAP
    state.toggle_view_mode()
    assert state.view_mode == ViewMode.LIST
    state.set_view_mode("map")
    assert state.view_mode == ViewMode.MAP


def test_replacing_record_keeps_selection() -> None:
    state = _state(_memory(1))
    state.select(1)
    state.replace_memory({**_memory(1), "friend_tags": ["Ana"]})
    assert state.selected_id == 1
    assert state.selected_memory["friend_tags"] == ["Ana"]
