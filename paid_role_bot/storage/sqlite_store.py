from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import aiosqlite

from .utils import _sqlite_connection


class SqliteIdentityStore:
    """Durable email -> member id records kept in a local SQLite database."""

    SCHEMA_VERSION = 1
    backend_name = "sqlite"

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    async def init(self) -> None:
        async with _sqlite_connection(self.db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            async with db.execute("PRAGMA user_version") as cursor:
                row = await cursor.fetchone()
            version = int(row[0]) if row else 0
            if version > self.SCHEMA_VERSION:
                raise RuntimeError(
                    "SQLite schema version mismatch detected (database is newer than this bot build). "
                    f"Found user_version={version}, supported={self.SCHEMA_VERSION}."
                )
            await db.executescript(
                """
                CREATE TABLE IF NOT EXISTS verified_identities (
                    email TEXT PRIMARY KEY,
                    member_id TEXT NOT NULL,
                    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_verified_identities_member
                ON verified_identities(member_id);
                """
            )
            if version != self.SCHEMA_VERSION:
                await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
            await db.commit()

    async def close(self) -> None:
        return None

    async def ping(self) -> None:
        async with _sqlite_connection(self.db_path) as db:
            await db.execute("SELECT 1 FROM verified_identities LIMIT 1")

    async def upsert_identity(self, email: str, member_id: str) -> None:
        async with _sqlite_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO verified_identities (email, member_id, created_at, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                ON CONFLICT(email) DO UPDATE SET
                    member_id = excluded.member_id,
                    updated_at = CURRENT_TIMESTAMP
                WHERE verified_identities.member_id <> excluded.member_id
                """,
                (email, member_id),
            )
            await db.commit()

    async def get_identity(self, email: str) -> Optional[str]:
        async with _sqlite_connection(self.db_path) as db:
            async with db.execute(
                "SELECT member_id FROM verified_identities WHERE email = ?",
                (email,),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return str(row[0])

    async def delete_identity(self, email: str, member_id: str) -> bool:
        async with _sqlite_connection(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM verified_identities WHERE email = ? AND member_id = ?",
                (email, member_id),
            )
            deleted = cursor.rowcount
            await cursor.close()
            await db.commit()
        return deleted > 0

    async def list_identities(self) -> Dict[str, str]:
        async with _sqlite_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT email, member_id FROM verified_identities ORDER BY email"
            ) as cursor:
                rows = await cursor.fetchall()
        return {str(row["email"]): str(row["member_id"]) for row in rows}
