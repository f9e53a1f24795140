from fastapi.testclient import TestClient

from services import Identification, PlaceCandidate

JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg"


def _files(data: bytes = JPEG_BYTES):
    return {"original": ("IMG_0042.jpg", data, "image/jpeg")}


def test_upload_with_failed_enrichment_returns_degraded_record(
    build_app, memory_store, identifier, auth_headers
) -> None:
    identifier.result = Identification("Pastrami on rye", None, "parsed")
    with TestClient(build_app()) as client:
        response = client.post(
            "/upload",
            files=_files(),
            data={"latitude": "40.7484", "longitude": "-73.9857", "photoTakenAt": "2026-01-02T18:30:00Z"},
            headers=auth_headers,
        )

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == 1
    assert body["dish_name"] == "Pastrami on rye"
    assert body["restaurant_name"] is None
    assert body["google_maps_url"] is None
    assert body["cropped_image_url"] == body["original_image_url"]
    assert body["photo_taken_at"] == "2026-01-02T18:30:00+00:00"
    assert body["nearby_restaurants"] == []
    assert "nearby_restaurants" not in memory_store.rows[1]


def test_upload_returns_nearby_candidates(build_app, places, identifier, auth_headers) -> None:
    places.candidates = [PlaceCandidate("Katz's Delicatessen", "ChIJkatz")]
    identifier.result = Identification("Pastrami on rye", "Katz's Delicatessen", "parsed")
    with TestClient(build_app()) as client:
        response = client.post(
            "/upload",
            files=_files(),
            data={"latitude": "40.7222", "longitude": "-73.9874"},
            headers=auth_headers,
        )
    body = response.json()
    assert body["restaurant_name"] == "Katz's Delicatessen"
    assert body["nearby_restaurants"] == ["Katz's Delicatessen"]


def test_upload_rejects_missing_location(build_app, memory_store, auth_headers) -> None:
    with TestClient(build_app()) as client:
        response = client.post(
            "/upload", files=_files(), data={"latitude": "40.7"}, headers=auth_headers
        )
    assert response.status_code == 400
    assert response.json()["detail"] == "Missing image or location data"
    assert memory_store.rows == {}


def test_upload_rejects_missing_image(build_app, memory_store, auth_headers) -> None:
    with TestClient(build_app()) as client:
        response = client.post(
            "/upload", data={"latitude": "40.7", "longitude": "-73.9"}, headers=auth_headers
        )
    assert response.status_code == 400
    assert memory_store.rows == {}


def test_upload_rejects_out_of_range_latitude(build_app, memory_store, places, auth_headers) -> None:
    with TestClient(build_app()) as client:
        response = client.post(
            "/upload",
            files=_files(),
            data={"latitude": "91", "longitude": "0"},
            headers=auth_headers,
        )
    assert response.status_code == 400
    assert "latitude" in response.json()["detail"]
    assert memory_store.rows == {}
    assert places.nearby_calls == []


def test_upload_rejects_bad_capture_time(build_app, memory_store, auth_headers) -> None:
    with TestClient(build_app()) as client:
        response = client.post(
            "/upload",
            files=_files(),
            data={"latitude": "40.7", "longitude": "-73.9", "photoTakenAt": "last tuesday"},
            headers=auth_headers,
        )
    assert response.status_code == 400
    assert memory_store.rows == {}


def test_upload_reports_storage_failure(build_app, memory_store, auth_headers) -> None:
    memory_store.fail_create = RuntimeError("disk I/O error")
    with TestClient(build_app()) as client:
        response = client.post(
            "/upload",
            files=_files(),
            data={"latitude": "40.7", "longitude": "-73.9"},
            headers=auth_headers,
        )
    assert response.status_code == 500
    assert response.json()["detail"].startswith("Upload failed")


def test_upload_requires_api_key(build_app, memory_store, places) -> None:
    with TestClient(build_app()) as client:
        response = client.post(
            "/upload", files=_files(), data={"latitude": "40.7", "longitude": "-73.9"}
        )
    assert response.status_code == 401
    assert memory_store.rows == {}
    assert places.nearby_calls == []
