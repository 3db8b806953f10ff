from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

import asyncpg


logger = logging.getLogger("paid_role_bot.storage")


class PostgresIdentityStore:
    """Postgres-backed identity records implementing the same API as SqliteIdentityStore."""

    backend_name = "postgres"

    def __init__(self, dsn: str, *, command_timeout: float = 30.0) -> None:
        self.dsn = dsn.strip()
        if not self.dsn:
            raise ValueError("POSTGRES_DSN cannot be empty")
        self.command_timeout = float(command_timeout)
        self._pool: asyncpg.Pool | None = None
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=1,
                max_size=4,
                command_timeout=self.command_timeout,
            )
        return self._pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
        self._initialized = False

    async def ping(self) -> None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute("SELECT 1 FROM verified_identities LIMIT 1")

    async def init(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS verified_identities (
                        email TEXT PRIMARY KEY,
                        member_id TEXT NOT NULL,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                    );
                    CREATE INDEX IF NOT EXISTS idx_verified_identities_member
                    ON verified_identities(member_id);
                    """
                )
            self._initialized = True
            logger.info("Postgres identity store ready")

    async def upsert_identity(self, email: str, member_id: str) -> None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO verified_identities (email, member_id)
                VALUES ($1, $2)
                ON CONFLICT (email) DO UPDATE SET
                    member_id = EXCLUDED.member_id,
                    updated_at = NOW()
                WHERE verified_identities.member_id <> EXCLUDED.member_id
                """,
                email,
                member_id,
            )

    async def get_identity(self, email: str) -> Optional[str]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            value = await conn.fetchval(
                "SELECT member_id FROM verified_identities WHERE email = $1",
                email,
            )
        return None if value is None else str(value)

    async def delete_identity(self, email: str, member_id: str) -> bool:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            status = await conn.execute(
                "DELETE FROM verified_identities WHERE email = $1 AND member_id = $2",
                email,
                member_id,
            )
        # asyncpg returns the command tag, e.g. "DELETE 1".
        return status.rsplit(" ", 1)[-1] not in {"", "0"}

    async def list_identities(self) -> Dict[str, str]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch("SELECT email, member_id FROM verified_identities ORDER BY email")
        return {str(row["email"]): str(row["member_id"]) for row in rows}
