from __future__ import annotations

import asyncio
import sqlite3
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from paid_role_bot.storage.factory import build_record_store  # noqa: E402
from paid_role_bot.storage.sqlite_store import SqliteIdentityStore  # noqa: E402


def test_sqlite_store_upsert_get_list_and_delete(tmp_path: Path) -> None:
    store = SqliteIdentityStore(tmp_path / "identities.db")

    async def scenario() -> tuple[object, ...]:
        await store.init()
        await store.upsert_identity("a@x.com", "1")
        await store.upsert_identity("b@x.com", "2")
        await store.upsert_identity("a@x.com", "3")
        listed = await store.list_identities()
        got = await store.get_identity("a@x.com")
        wrong_member = await store.delete_identity("a@x.com", "1")
        deleted = await store.delete_identity("a@x.com", "3")
        missing = await store.get_identity("a@x.com")
        await store.ping()
        return listed, got, wrong_member, deleted, missing

    listed, got, wrong_member, deleted, missing = asyncio.run(scenario())

    assert listed == {"a@x.com": "3", "b@x.com": "2"}
    assert got == "3"
    assert wrong_member is False
    assert deleted is True
    assert missing is None


def test_sqlite_store_init_is_repeatable_and_sets_schema_version(tmp_path: Path) -> None:
    db_path = tmp_path / "identities.db"
    asyncio.run(SqliteIdentityStore(db_path).init())
    asyncio.run(SqliteIdentityStore(db_path).init())

    with sqlite3.connect(db_path) as conn:
        version = conn.execute("PRAGMA user_version").fetchone()[0]
    assert version == SqliteIdentityStore.SCHEMA_VERSION


def test_sqlite_store_refuses_newer_schema(tmp_path: Path) -> None:
    db_path = tmp_path / "identities.db"
    asyncio.run(SqliteIdentityStore(db_path).init())
    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA user_version = 999")
        conn.commit()

    with pytest.raises(RuntimeError, match="schema version mismatch"):
        asyncio.run(SqliteIdentityStore(db_path).init())


def test_build_record_store_picks_backend(tmp_path: Path) -> None:
    settings = SimpleNamespace(record_store_backend="sqlite", sqlite_path=tmp_path / "x.db", postgres_dsn="")
    assert isinstance(build_record_store(settings), SqliteIdentityStore)  # type: ignore[arg-type]

    settings.record_store_backend = "postgres"
    with pytest.raises(ValueError, match="POSTGRES_DSN"):
        build_record_store(settings)  # type: ignore[arg-type]

    settings.record_store_backend = "mongo"
    with pytest.raises(ValueError, match="RECORD_STORE_BACKEND"):
        build_record_store(settings)  # type: ignore[arg-type]


def test_sqlite_ping_fails_until_schema_exists(tmp_path: Path) -> None:
    store = SqliteIdentityStore(tmp_path / "identities.db")

    with pytest.raises(sqlite3.OperationalError):
        asyncio.run(store.ping())

    asyncio.run(store.init())
    asyncio.run(store.ping())
