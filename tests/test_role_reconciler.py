from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

discord = pytest.importorskip("discord")

from paid_role_bot.roles.reconciler import GrantOutcome, RevokeOutcome, RoleReconciler  # noqa: E402


GUILD_ID = 10
ROLE_ID = 20


class _FakeMember:
    def __init__(self, member_id: int, *, roles: list[object] | None = None, dm_fails: bool = False) -> None:
        self.id = member_id
        self.roles = list(roles or [])
        self.dm_fails = dm_fails
        self.sent: list[str] = []
        self.add_calls = 0
        self.remove_calls = 0

    async def add_roles(self, role: object, *, reason: str | None = None) -> None:
        self.add_calls += 1
        self.roles.append(role)

    async def remove_roles(self, role: object, *, reason: str | None = None) -> None:
        self.remove_calls += 1
        self.roles = [r for r in self.roles if getattr(r, "id", None) != getattr(role, "id", None)]

    async def send(self, text: str) -> None:
        if self.dm_fails:
            raise RuntimeError("Cannot send messages to this user")
        self.sent.append(text)

    def __str__(self) -> str:
        return f"member-{self.id}"


class _FakeGuild:
    def __init__(
        self,
        *,
        members: dict[int, _FakeMember],
        fetchable: dict[int, _FakeMember] | None = None,
        role: object | None,
    ) -> None:
        self.id = GUILD_ID
        self.members = members
        self.fetchable = fetchable or {}
        self.role = role
        self.fetch_calls: list[int] = []

    def get_role(self, role_id: int) -> object | None:
        return self.role if self.role is not None and role_id == ROLE_ID else None

    def get_member(self, member_id: int) -> _FakeMember | None:
        return self.members.get(member_id)

    async def fetch_member(self, member_id: int) -> _FakeMember:
        self.fetch_calls.append(member_id)
        if member_id in self.fetchable:
            return self.fetchable[member_id]
        raise discord.NotFound(SimpleNamespace(status=404, reason="Not Found"), "Unknown Member")


def _role() -> SimpleNamespace:
    return SimpleNamespace(id=ROLE_ID, name="Member")


def _reconciler(guild: _FakeGuild | None) -> RoleReconciler:
    return RoleReconciler(lambda guild_id: guild if guild_id == GUILD_ID else None, guild_id=GUILD_ID, role_id=ROLE_ID)


def test_grant_is_idempotent() -> None:
    member = _FakeMember(1)
    reconciler = _reconciler(_FakeGuild(members={1: member}, role=_role()))

    first = asyncio.run(reconciler.grant("1"))
    second = asyncio.run(reconciler.grant("1"))

    assert first is GrantOutcome.GRANTED
    assert second is GrantOutcome.ALREADY_GRANTED
    assert member.add_calls == 1


def test_grant_fetches_uncached_member() -> None:
    member = _FakeMember(2)
    guild = _FakeGuild(members={}, fetchable={2: member}, role=_role())

    assert asyncio.run(_reconciler(guild).grant("2")) is GrantOutcome.GRANTED
    assert guild.fetch_calls == [2]


def test_revoke_notifies_once_and_is_idempotent() -> None:
    role = _role()
    member = _FakeMember(1, roles=[role])
    reconciler = _reconciler(_FakeGuild(members={1: member}, role=role))

    first = asyncio.run(reconciler.revoke("1", email="a@x.com"))
    second = asyncio.run(reconciler.revoke("1", email="a@x.com"))

    assert first is RevokeOutcome.REVOKED
    assert second is RevokeOutcome.ALREADY_ABSENT
    assert member.remove_calls == 1
    assert len(member.sent) == 1
    assert "a@x.com" in member.sent[0]


def test_revoke_without_email_uses_generic_notice() -> None:
    role = _role()
    member = _FakeMember(1, roles=[role])

    asyncio.run(_reconciler(_FakeGuild(members={1: member}, role=role)).revoke("1"))

    assert member.sent and "@" not in member.sent[0]


def test_revoke_still_succeeds_when_dm_fails() -> None:
    role = _role()
    member = _FakeMember(1, roles=[role], dm_fails=True)

    outcome = asyncio.run(_reconciler(_FakeGuild(members={1: member}, role=role)).revoke("1", email="a@x.com"))

    assert outcome is RevokeOutcome.REVOKED
    assert member.roles == []


def test_member_not_found() -> None:
    reconciler = _reconciler(_FakeGuild(members={}, role=_role()))

    assert asyncio.run(reconciler.grant("404")) is GrantOutcome.MEMBER_NOT_FOUND
    assert asyncio.run(reconciler.revoke("404")) is RevokeOutcome.MEMBER_NOT_FOUND
    assert asyncio.run(reconciler.grant("not-a-snowflake")) is GrantOutcome.MEMBER_NOT_FOUND


def test_role_or_guild_not_found() -> None:
    missing_role = _reconciler(_FakeGuild(members={1: _FakeMember(1)}, role=None))
    missing_guild = _reconciler(None)

    assert asyncio.run(missing_role.grant("1")) is GrantOutcome.ROLE_NOT_FOUND
    assert asyncio.run(missing_role.revoke("1")) is RevokeOutcome.ROLE_NOT_FOUND
    assert asyncio.run(missing_guild.grant("1")) is GrantOutcome.ROLE_NOT_FOUND
