from __future__ import annotations

from typing import Dict, Optional, Protocol

from ..config import Settings
from .sqlite_store import SqliteIdentityStore


class IdentityRecordStore(Protocol):
    backend_name: str

    async def init(self) -> None: ...

    async def close(self) -> None: ...

    async def ping(self) -> None: ...

    async def upsert_identity(self, email: str, member_id: str) -> None: ...

    async def get_identity(self, email: str) -> Optional[str]: ...

    async def delete_identity(self, email: str, member_id: str) -> bool: ...

    async def list_identities(self) -> Dict[str, str]: ...


def build_record_store(settings: Settings) -> IdentityRecordStore:
    backend = settings.record_store_backend
    if backend == "sqlite":
        return SqliteIdentityStore(settings.sqlite_path)
    if backend != "postgres":
        raise ValueError("RECORD_STORE_BACKEND must be 'sqlite' or 'postgres'")
    if not settings.postgres_dsn:
        raise ValueError("POSTGRES_DSN is required when RECORD_STORE_BACKEND=postgres")

    from .postgres_store import PostgresIdentityStore

    return PostgresIdentityStore(settings.postgres_dsn)
