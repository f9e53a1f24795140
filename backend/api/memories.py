"""
Memories API - list the journal and edit a single record.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Response
from pydantic import BaseModel, ConfigDict, Field

from runtime_state import RuntimeState, get_runtime
from .maintenance import require_api_key

router = APIRouter(prefix="/memories", tags=["memories"])

_NO_CACHE = "no-store, no-cache, must-revalidate"


class MemoryPatch(BaseModel):
    """
    Only the keys present in the request body are applied. Sending a key
    with null clears that field.
    """

    model_config = ConfigDict(extra="forbid")

    friend_tags: Optional[List[str]] = Field(default=None, max_length=50)
    personal_note: Optional[str] = Field(default=None, max_length=5000)
    dish_name: Optional[str] = Field(default=None, max_length=200)
    restaurant_name: Optional[str] = Field(default=None, max_length=255)


@router.get("")
async def list_memories(
    response: Response,
    runtime: RuntimeState = Depends(get_runtime),
):
    """Most recent records first, capped at the configured limit."""
    client = runtime.sqlite_client
    try:
        memories = await client.list_memories(limit=runtime.memories_limit)
        stats = await client.get_table_stats()
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Failed to fetch memories: {exc}")

    response.headers["Cache-Control"] = _NO_CACHE
    response.headers["X-DB-Total"] = str(stats["total"])
    response.headers["X-DB-Max-Id"] = "" if stats["max_id"] is None else str(stats["max_id"])
    response.headers["X-Returned"] = str(len(memories))
    return memories


@router.patch("/{memory_id}")
async def update_memory(
    body: MemoryPatch,
    response: Response,
    memory_id: int = Path(..., ge=1),
    runtime: RuntimeState = Depends(get_runtime),
    _auth: None = Depends(require_api_key),
):
    patch = body.model_dump(exclude_unset=True)
    try:
        updated = await runtime.updater.apply(memory_id, patch)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Failed to update memory: {exc}")

    if updated is None:
        raise HTTPException(status_code=404, detail=f"Memory not found: {memory_id}")
    response.headers["Cache-Control"] = _NO_CACHE
    return updated
