from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Callable

import discord


logger = logging.getLogger("paid_role_bot.roles")

REVOKE_NOTICE = (
    "Your payment for {email} failed or your subscription was canceled. "
    "Your Member role has been removed, and you've lost access to private channels. "
    "Update your payment method in Stripe and run /checkpayment to restore access."
)
REVOKE_NOTICE_NO_EMAIL = (
    "Your payment failed or your subscription was canceled. "
    "Your Member role has been removed, and you've lost access to private channels. "
    "Update your payment method in Stripe and run /checkpayment to restore access."
)


class GrantOutcome(str, Enum):
    GRANTED = "granted"
    ALREADY_GRANTED = "already-granted"
    MEMBER_NOT_FOUND = "member-not-found"
    ROLE_NOT_FOUND = "role-not-found"


class RevokeOutcome(str, Enum):
    REVOKED = "revoked"
    ALREADY_ABSENT = "already-absent"
    MEMBER_NOT_FOUND = "member-not-found"
    ROLE_NOT_FOUND = "role-not-found"


class RoleReconciler:
    """Converges one configured guild role to the wanted state for a member.

    ``guild_lookup`` is usually ``discord.Client.get_guild``. Missing guild, role or member
    are terminal for the call and reported through the outcome enums.
    """

    def __init__(
        self,
        guild_lookup: Callable[[int], Any],
        *,
        guild_id: int,
        role_id: int,
    ) -> None:
        self.guild_lookup = guild_lookup
        self.guild_id = int(guild_id)
        self.role_id = int(role_id)
        self.member_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _resolve_role(self) -> tuple[Any, Any]:
        guild = self.guild_lookup(self.guild_id)
        if guild is None:
            logger.error("Guild %s not found. Check GUILD_ID and that the bot joined the server", self.guild_id)
            return None, None
        role = guild.get_role(self.role_id)
        if role is None:
            logger.error("Role %s not found in guild %s. Check ROLE_ID", self.role_id, self.guild_id)
        return guild, role

    @staticmethod
    async def _resolve_member(guild: Any, member_id: str) -> Any:
        try:
            user_id = int(member_id)
        except (TypeError, ValueError):
            logger.error("Member id %r is not a Discord snowflake", member_id)
            return None
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user_id)
        except discord.NotFound:
            logger.error("Member %s not found in guild %s", member_id, getattr(guild, "id", "?"))
            return None

    @staticmethod
    def _has_role(member: Any, role: Any) -> bool:
        return any(getattr(item, "id", None) == role.id for item in member.roles)

    async def grant(self, member_id: str) -> GrantOutcome:
        async with self.member_locks[str(member_id)]:
            guild, role = self._resolve_role()
            if role is None:
                return GrantOutcome.ROLE_NOT_FOUND
            member = await self._resolve_member(guild, member_id)
            if member is None:
                return GrantOutcome.MEMBER_NOT_FOUND
            if self._has_role(member, role):
                logger.info("%s already has role %s", member, role.name)
                return GrantOutcome.ALREADY_GRANTED
            await member.add_roles(role, reason="Stripe entitlement active")
            logger.info("Added role '%s' to %s", role.name, member)
            return GrantOutcome.GRANTED

    async def revoke(self, member_id: str, *, email: str | None = None) -> RevokeOutcome:
        async with self.member_locks[str(member_id)]:
            guild, role = self._resolve_role()
            if role is None:
                return RevokeOutcome.ROLE_NOT_FOUND
            member = await self._resolve_member(guild, member_id)
            if member is None:
                return RevokeOutcome.MEMBER_NOT_FOUND
            if not self._has_role(member, role):
                logger.info("%s does not have role %s", member, role.name)
                return RevokeOutcome.ALREADY_ABSENT
            await member.remove_roles(role, reason="Stripe entitlement ended")
            logger.info("Removed role '%s' from %s", role.name, member)
            await self._notify_revoked(member, email)
            return RevokeOutcome.REVOKED

    async def _notify_revoked(self, member: Any, email: str | None) -> None:
        text = REVOKE_NOTICE.format(email=email) if email else REVOKE_NOTICE_NO_EMAIL
        try:
            await member.send(text)
        except Exception as exc:
            logger.error("Failed to send DM to %s: %s", member, exc)
            return
        logger.info("Sent DM to %s about role removal", member)
