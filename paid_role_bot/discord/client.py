from __future__ import annotations

import logging

import discord
from discord import app_commands

from ..config import Settings
from ..engine import ReconciliationEngine
from .commands import register_member_commands


logger = logging.getLogger("paid_role_bot.discord")


class PaymentRoleBot(discord.Client):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.members = settings.discord_members_intent

        super().__init__(intents=intents)

        self.settings = settings
        self.tree = app_commands.CommandTree(self)
        self._engine: ReconciliationEngine | None = None

    @property
    def engine(self) -> ReconciliationEngine:
        if self._engine is None:
            raise RuntimeError("PaymentRoleBot used before an engine was bound")
        return self._engine

    def bind_engine(self, engine: ReconciliationEngine) -> None:
        self._engine = engine

    def is_community_ready(self) -> bool:
        return self.is_ready() and self.user is not None

    async def setup_hook(self) -> None:
        guild = discord.Object(id=self.settings.guild_id)
        register_member_commands(self, guild=guild)
        try:
            synced = await self.tree.sync(guild=guild)
        except discord.HTTPException as exc:
            logger.error("Error registering commands: %s", exc)
            return
        logger.info("Registered %s commands: %s", len(synced), ", ".join(f"/{cmd.name}" for cmd in synced))

    async def on_ready(self) -> None:
        if self.user:
            logger.info("Logged in as %s (%s)", self.user, self.user.id)
        if self.get_guild(self.settings.guild_id) is None:
            logger.error("Guild %s not found. Check GUILD_ID", self.settings.guild_id)
