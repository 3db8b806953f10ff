from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from collections import defaultdict
from pathlib import Path
from typing import Dict

from ..common import normalize_email
from ..errors import AuthorizationMismatch, PersistenceFailure
from ..storage.factory import IdentityRecordStore


logger = logging.getLogger("paid_role_bot.identity")


class IdentityRegistry:
    """Email -> member id mapping with a JSON snapshot in front of the durable record store.

    Every mutation updates memory first, rewrites the snapshot file and then upserts each
    entry into the record store. The record store wins whenever the two disagree.
    """

    def __init__(self, cache_path: Path, store: IdentityRecordStore) -> None:
        self.cache_path = Path(cache_path)
        self.store = store
        self._records: Dict[str, str] = {}
        self._key_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._save_lock = asyncio.Lock()

    def snapshot(self) -> Dict[str, str]:
        return dict(self._records)

    async def reload(self) -> None:
        try:
            raw = await asyncio.to_thread(self.cache_path.read_text, encoding="utf-8")
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("identity snapshot must be a JSON object")
        except (OSError, ValueError) as exc:
            logger.info("No usable identity snapshot at %s (%s); starting fresh", self.cache_path, exc)
            self._records = {}
            await self.save()
        else:
            records: Dict[str, str] = {}
            for key, value in data.items():
                email = normalize_email(key)
                member_id = str(value or "").strip()
                if email and member_id:
                    records[email] = member_id
            self._records = records
            logger.info("Loaded %s verified identities from %s", len(records), self.cache_path)

        await self._adopt_store_records()

    async def _adopt_store_records(self) -> None:
        try:
            stored = await self.store.list_identities()
        except Exception as exc:
            logger.warning("Record store unavailable during reload, keeping snapshot only: %s", exc)
            return
        changed = 0
        for email, member_id in stored.items():
            if self._records.get(email) != member_id:
                self._records[email] = member_id
                changed += 1
        if changed:
            logger.info("Adopted %s identities from the record store", changed)
            await self.save()

    async def link(self, email: str, member_id: str) -> str:
        key = normalize_email(email)
        if not key:
            raise ValueError("email is required")
        member_id = str(member_id).strip()
        if not member_id:
            raise ValueError("member id is required")

        async with self._key_locks[key]:
            previous = self._records.get(key)
            self._records[key] = member_id
            try:
                await self.save()
            except Exception:
                # Memory must match what the caller is told.
                if previous is None:
                    self._records.pop(key, None)
                else:
                    self._records[key] = previous
                raise
            if previous is not None and previous != member_id:
                logger.warning("Relinked %s from member %s to %s", key, previous, member_id)
        logger.info("Linked %s to member %s", key, member_id)
        return key

    async def unlink(self, email: str, member_id: str) -> str:
        key = normalize_email(email)
        member_id = str(member_id).strip()
        async with self._key_locks[key]:
            current = await self._current_member(key)
            if current is None or current != member_id:
                raise AuthorizationMismatch(key)
            # Under the save lock no sweep can hold an older snapshot that still has this key.
            async with self._save_lock:
                self._records.pop(key, None)
                try:
                    await self._flush()
                except Exception:
                    self._records[key] = current
                    raise
                try:
                    await self.store.delete_identity(key, member_id)
                except Exception as exc:
                    logger.error("%s", PersistenceFailure(key, exc))
        logger.info("Unlinked %s from member %s", key, member_id)
        return key

    async def lookup(self, email: str) -> str | None:
        key = normalize_email(email)
        if not key:
            return None
        return await self._current_member(key)

    async def _current_member(self, key: str) -> str | None:
        member_id = self._records.get(key)
        if member_id is not None:
            return member_id
        try:
            member_id = await self.store.get_identity(key)
        except Exception as exc:
            logger.warning("Record store lookup failed for %s: %s", key, exc)
            return None
        if member_id is None:
            return None
        logger.info("Adopted %s -> %s from the record store", key, member_id)
        self._records[key] = member_id
        await self.save()
        return member_id

    async def save(self) -> list[str]:
        """Rewrite the snapshot file, then upsert every entry. Returns emails the store rejected."""
        async with self._save_lock:
            return await self._flush()

    async def _flush(self) -> list[str]:
        # Caller holds _save_lock.
        snapshot = dict(self._records)
        await asyncio.to_thread(self._write_snapshot, snapshot)
        failed: list[str] = []
        for email, member_id in snapshot.items():
            # Skip entries unlinked or relinked since the snapshot was taken.
            if self._records.get(email) != member_id:
                continue
            try:
                await self.store.upsert_identity(email, member_id)
            except Exception as exc:
                failed.append(email)
                logger.warning("%s", PersistenceFailure(email, exc))
        if failed:
            logger.error(
                "Record store resync incomplete: %s of %s entries failed, will retry on next save",
                len(failed),
                len(snapshot),
            )
        return failed

    def _write_snapshot(self, snapshot: Dict[str, str]) -> None:
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(self.cache_path.parent),
            prefix=f".{self.cache_path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(snapshot, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.cache_path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
