"""
Upload API - turn one food photo into a map memory.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from runtime_state import RuntimeState, get_runtime
from services import UploadedImage, UploadValidationError
from .maintenance import require_api_key

router = APIRouter(tags=["upload"])


@router.post("/upload")
async def upload_memory(
    original: Optional[UploadFile] = File(default=None),
    latitude: Optional[str] = Form(default=None),
    longitude: Optional[str] = Form(default=None),
    photo_taken_at: Optional[str] = Form(default=None, alias="photoTakenAt"),
    runtime: RuntimeState = Depends(get_runtime),
    _auth: None = Depends(require_api_key),
):
    """
    Multipart fields: `original` (image file), `latitude`, `longitude`,
    optional `photoTakenAt` (ISO-8601).

    Returns the created record plus `nearby_restaurants`, the candidate
    names offered for a manual restaurant override. The list is not stored.
    """
    image = None
    if original is not None:
        data = await original.read()
        image = UploadedImage(
            data=data,
            filename=original.filename or "image.jpg",
            content_type=original.content_type or "application/octet-stream",
        )

    try:
        result = await runtime.pipeline.ingest(
            image, latitude, longitude, photo_taken_at=photo_taken_at
        )
    except UploadValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Upload failed: {exc}")

    return {**result.memory, "nearby_restaurants": result.nearby_restaurants}
