"""
SQLite Client for the Food Memory journal.

One table, `food_memories`, holds every uploaded photo record:
- images (original + background-removed display variant)
- coordinates and capture/creation timestamps
- AI-derived and user-edited fields (dish, restaurant, tags, note)
- neighborhood/borough labels filled in by the location backfill job
"""

import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    func,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .migration_runner import apply_pending_migrations

Base = declarative_base()

_SQLITE_ADAPTERS_REGISTERED = False

# Columns a patch may touch. Location labels are written only by the backfill.
MUTABLE_FIELDS = (
    "friend_tags",
    "personal_note",
    "dish_name",
    "restaurant_name",
    "google_maps_url",
)


def _register_sqlite_adapters() -> None:
    """
    Register explicit sqlite adapters for Python datetime objects.

    Python 3.12+ deprecates sqlite3's implicit default datetime adapter.
    """
    global _SQLITE_ADAPTERS_REGISTERED
    if _SQLITE_ADAPTERS_REGISTERED:
        return
    sqlite3.register_adapter(datetime, lambda value: value.isoformat(sep=" "))
    _SQLITE_ADAPTERS_REGISTERED = True


_register_sqlite_adapters()


def _utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def _utc_now_naive() -> datetime:
    """Naive UTC datetime; every DateTime column stores naive UTC."""
    return _utc_now().replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _iso_utc(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# ORM Models
# =============================================================================


class FoodMemory(Base):
    """A single food photo pinned to the map.

    `cropped_image_url` is the display image: the background-removed
    variant when removal succeeded, otherwise the original image URL.
    `google_maps_url` is the place-link and always refers to the current
    `restaurant_name` (or is NULL).
    """

    __tablename__ = "food_memories"
    __table_args__ = (
        Index("idx_food_memories_location", "latitude", "longitude"),
        Index("idx_food_memories_created", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    original_image_url = Column(Text, nullable=False)
    cropped_image_url = Column(Text, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    created_at = Column(DateTime, default=_utc_now_naive, nullable=False)
    photo_taken_at = Column(DateTime, nullable=True)

    dish_name = Column(String(100), nullable=True)
    restaurant_name = Column(String(255), nullable=True)
    google_maps_url = Column(Text, nullable=True)
    friend_tags = Column(JSON, nullable=True)
    personal_note = Column(Text, nullable=True)

    neighborhood = Column(String(255), nullable=True)
    borough = Column(String(255), nullable=True)


# =============================================================================
# SQLite Client
# =============================================================================


class SQLiteClient:
    """
    Async SQLite client for food memory records.

    Core operations:
    - list: most recent records first, capped
    - create: insert one record produced by the ingestion pipeline
    - update: apply a partial set of mutable fields
    - backfill helpers: rows missing location labels, null-only merge
    """

    def __init__(self, database_url: str):
        """
        Args:
            database_url: SQLAlchemy async URL, e.g.
                         "sqlite+aiosqlite:///food_memory.db"
        """
        self.database_url = database_url
        self.engine = create_async_engine(database_url, echo=False)
        self.async_session = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def init_db(self):
        """Create tables if they don't exist, then apply SQL migrations."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await apply_pending_migrations(self.database_url)

    async def close(self):
        """Close the database connection."""
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self):
        """Get an async session context manager."""
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    @staticmethod
    def _memory_to_dict(row: FoodMemory) -> Dict[str, Any]:
        return {
            "id": row.id,
            "original_image_url": row.original_image_url,
            "cropped_image_url": row.cropped_image_url,
            "latitude": float(row.latitude),
            "longitude": float(row.longitude),
            "created_at": _iso_utc(row.created_at),
            "photo_taken_at": _iso_utc(row.photo_taken_at),
            "dish_name": row.dish_name,
            "restaurant_name": row.restaurant_name,
            "google_maps_url": row.google_maps_url,
            "friend_tags": list(row.friend_tags) if row.friend_tags else None,
            "personal_note": row.personal_note,
            "neighborhood": row.neighborhood,
            "borough": row.borough,
        }

    # =========================================================================
    # Reads
    # =========================================================================

    async def list_memories(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recently created records first."""
        async with self.session() as session:
            result = await session.execute(
                select(FoodMemory)
                .order_by(FoodMemory.created_at.desc(), FoodMemory.id.desc())
                .limit(max(1, int(limit)))
            )
            return [self._memory_to_dict(row) for row in result.scalars().all()]

    async def get_memory(self, memory_id: int) -> Optional[Dict[str, Any]]:
        async with self.session() as session:
            row = await session.get(FoodMemory, memory_id)
            return self._memory_to_dict(row) if row is not None else None

    async def get_table_stats(self) -> Dict[str, Any]:
        async with self.session() as session:
            result = await session.execute(
                select(func.count(FoodMemory.id), func.max(FoodMemory.id))
            )
            total, max_id = result.one()
            return {"total": int(total or 0), "max_id": max_id}

    # =========================================================================
    # Writes
    # =========================================================================

    async def create_memory(
        self,
        *,
        original_image_url: str,
        cropped_image_url: str,
        latitude: float,
        longitude: float,
        photo_taken_at: Optional[datetime] = None,
        dish_name: Optional[str] = None,
        restaurant_name: Optional[str] = None,
        google_maps_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Insert one record. The id and created_at are assigned here and
        never change afterwards.
        """
        if not original_image_url:
            raise ValueError("original_image_url is required")
        if not -90.0 <= latitude <= 90.0 or not -180.0 <= longitude <= 180.0:
            raise ValueError(f"Coordinates out of range: ({latitude}, {longitude})")

        async with self.session() as session:
            row = FoodMemory(
                original_image_url=original_image_url,
                cropped_image_url=cropped_image_url or original_image_url,
                latitude=latitude,
                longitude=longitude,
                created_at=_utc_now_naive(),
                photo_taken_at=to_naive_utc(photo_taken_at),
                dish_name=dish_name,
                restaurant_name=restaurant_name,
                google_maps_url=google_maps_url,
            )
            session.add(row)
            await session.flush()
            return self._memory_to_dict(row)

    async def update_memory(
        self, memory_id: int, changes: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """
        Apply a partial update. Only keys present in `changes` are written;
        returns None when the record does not exist.
        """
        unknown = set(changes) - set(MUTABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields are not mutable: {sorted(unknown)}")

        async with self.session() as session:
            row = await session.get(FoodMemory, memory_id)
            if row is None:
                return None
            for field_name, value in changes.items():
                setattr(row, field_name, value)
            await session.flush()
            return self._memory_to_dict(row)

    # =========================================================================
    # Location backfill
    # =========================================================================

    async def get_memories_missing_location(self) -> List[Dict[str, Any]]:
        async with self.session() as session:
            result = await session.execute(
                select(FoodMemory.id, FoodMemory.latitude, FoodMemory.longitude)
                .where(
                    (FoodMemory.neighborhood.is_(None)) | (FoodMemory.borough.is_(None))
                )
                .order_by(FoodMemory.id)
            )
            return [
                {"id": row[0], "latitude": float(row[1]), "longitude": float(row[2])}
                for row in result.all()
            ]

    async def merge_location_labels(
        self,
        memory_id: int,
        *,
        neighborhood: Optional[str],
        borough: Optional[str],
    ) -> bool:
        """Fill neighborhood/borough only where they are still NULL."""
        async with self.session() as session:
            result = await session.execute(
                update(FoodMemory)
                .where(FoodMemory.id == memory_id)
                .values(
                    neighborhood=func.coalesce(FoodMemory.neighborhood, neighborhood),
                    borough=func.coalesce(FoodMemory.borough, borough),
                )
            )
            return (result.rowcount or 0) > 0

    async def rename_neighborhood(self, old_name: str, new_name: str) -> int:
        async with self.session() as session:
            result = await session.execute(
                update(FoodMemory)
                .where(FoodMemory.neighborhood == old_name)
                .values(neighborhood=new_name)
            )
            return int(result.rowcount or 0)
