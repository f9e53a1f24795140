"""
SQLite migration runner for the Food Memory store.

Migrations are SQL files under backend/db/migrations named like:
    0001_description.sql

They bring databases created by older releases up to the current
`food_memories` layout. Applied versions are tracked in
`schema_migrations` together with a checksum of the file.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import unquote

from filelock import FileLock, Timeout

_SQLITE_FILE_PREFIXES = ("sqlite+aiosqlite:///", "sqlite:///")
_MIGRATION_FILE_PATTERN = re.compile(r"^(?P<version>\d{4,})_.*\.sql$")
_ADD_COLUMN_PATTERN = re.compile(
    r"^ALTER\s+TABLE\s+.+\s+ADD\s+COLUMN\s+.+$",
    re.IGNORECASE | re.DOTALL,
)


@dataclass(frozen=True)
class MigrationFile:
    version: str
    path: Path
    checksum: str


def sqlite_file_from_url(database_url: str) -> Optional[Path]:
    """
    Local file path of a sqlite SQLAlchemy URL, or None for in-memory DBs.

    Supports sqlite+aiosqlite:///path.db and sqlite:///path.db.
    """
    for prefix in _SQLITE_FILE_PREFIXES:
        if not database_url.startswith(prefix):
            continue
        raw_path = database_url[len(prefix) :]
        raw_path = unquote(raw_path.split("?", 1)[0].split("#", 1)[0])
        if not raw_path or raw_path == ":memory:":
            return None
        return Path(raw_path)
    raise ValueError(
        "Unsupported DATABASE_URL for migration runner. "
        "Expected sqlite+aiosqlite:///... or sqlite:///..."
    )


class MigrationRunner:
    """Discover and apply SQL migrations with version tracking."""

    def __init__(
        self,
        database_url: str,
        migrations_dir: Optional[Path] = None,
        lock_timeout_seconds: Optional[float] = None,
    ) -> None:
        self.database_url = database_url
        self.database_file = sqlite_file_from_url(database_url)
        self.migrations_dir = (
            Path(migrations_dir)
            if migrations_dir is not None
            else Path(__file__).resolve().parent / "migrations"
        )
        self.lock_file_path = (
            Path(f"{self.database_file}.migrate.lock")
            if self.database_file is not None
            else None
        )
        if lock_timeout_seconds is None:
            try:
                lock_timeout_seconds = float(
                    os.getenv("DB_MIGRATION_LOCK_TIMEOUT_SEC", "10")
                )
            except ValueError:
                lock_timeout_seconds = 10.0
        self.lock_timeout_seconds = max(0.0, lock_timeout_seconds)

    async def apply_pending(self) -> List[str]:
        """Apply all pending migrations and return applied versions."""
        return await asyncio.to_thread(self._apply_pending_sync)

    def _apply_pending_sync(self) -> List[str]:
        migrations = self.discover()
        if not migrations or self.database_file is None:
            # In-memory DBs are created from current metadata every boot.
            return []

        self.database_file.parent.mkdir(parents=True, exist_ok=True)
        lock = FileLock(str(self.lock_file_path), timeout=self.lock_timeout_seconds)
        try:
            with lock:
                return self._apply_unlocked(migrations)
        except Timeout as exc:
            raise RuntimeError(
                "Timed out waiting for migration lock: "
                f"{self.lock_file_path} ({self.lock_timeout_seconds}s)"
            ) from exc

    def _apply_unlocked(self, migrations: List[MigrationFile]) -> List[str]:
        with sqlite3.connect(self.database_file) as conn:
            conn.row_factory = sqlite3.Row
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version TEXT PRIMARY KEY,
                    applied_at TEXT NOT NULL,
                    checksum TEXT NOT NULL
                )
                """
            )
            applied = {
                str(row["version"]): str(row["checksum"])
                for row in conn.execute("SELECT version, checksum FROM schema_migrations")
            }

            newly_applied: List[str] = []
            for migration in migrations:
                recorded = applied.get(migration.version)
                if recorded is not None:
                    if recorded != migration.checksum:
                        raise RuntimeError(
                            "Checksum mismatch for migration "
                            f"{migration.version}: recorded={recorded} "
                            f"current={migration.checksum}"
                        )
                    continue

                for statement in split_sql_statements(
                    migration.path.read_text(encoding="utf-8")
                ):
                    try:
                        conn.execute(statement)
                    except sqlite3.OperationalError as exc:
                        if _is_duplicate_column(statement, exc):
                            continue
                        raise
                conn.execute(
                    "INSERT INTO schema_migrations(version, applied_at, checksum) "
                    "VALUES (?, ?, ?)",
                    (
                        migration.version,
                        datetime.now(timezone.utc).isoformat(),
                        migration.checksum,
                    ),
                )
                conn.commit()
                newly_applied.append(migration.version)

            return newly_applied

    def discover(self) -> List[MigrationFile]:
        if not self.migrations_dir.exists():
            return []

        found: List[MigrationFile] = []
        for path in sorted(self.migrations_dir.glob("*.sql")):
            match = _MIGRATION_FILE_PATTERN.match(path.name)
            if not match:
                continue
            found.append(
                MigrationFile(
                    version=match.group("version"),
                    path=path,
                    checksum=_normalized_checksum(path.read_bytes()),
                )
            )
        return found


def _normalized_checksum(content: bytes) -> str:
    """CRLF/LF checkouts of the same file hash identically."""
    try:
        payload = (
            content.decode("utf-8").replace("\r\n", "\n").replace("\r", "\n").encode("utf-8")
        )
    except UnicodeDecodeError:
        payload = content
    return hashlib.sha256(payload).hexdigest()


def _is_duplicate_column(statement: str, exc: sqlite3.OperationalError) -> bool:
    if not _ADD_COLUMN_PATTERN.match(statement):
        return False
    return "duplicate column name" in str(exc).lower()


def split_sql_statements(script: str) -> List[str]:
    """Split on top-level semicolons, dropping comment-only fragments."""
    statements: List[str] = []
    buffer: List[str] = []
    in_single_quote = False

    for char in script:
        if char == "'":
            in_single_quote = not in_single_quote
        if char == ";" and not in_single_quote:
            statements.append("".join(buffer))
            buffer = []
        else:
            buffer.append(char)
    statements.append("".join(buffer))

    cleaned: List[str] = []
    for statement in statements:
        lines = [
            line
            for line in statement.splitlines()
            if line.strip() and not line.strip().startswith("--")
        ]
        if lines:
            cleaned.append("\n".join(lines).strip())
    return cleaned


async def apply_pending_migrations(
    database_url: str, migrations_dir: Optional[Path] = None
) -> List[str]:
    """Convenience wrapper used by SQLite client startup."""
    runner = MigrationRunner(database_url=database_url, migrations_dir=migrations_dir)
    return await runner.apply_pending()
