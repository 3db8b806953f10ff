from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands

from ..commands import run_checkpayment, run_unverify, run_verify

if TYPE_CHECKING:
    from .client import PaymentRoleBot


logger = logging.getLogger("paid_role_bot.discord")


async def send_ephemeral(interaction: discord.Interaction, text: str, *, command: str) -> None:
    try:
        if interaction.response.is_done():
            await interaction.followup.send(text, ephemeral=True)
        else:
            await interaction.response.send_message(text, ephemeral=True)
    except discord.HTTPException as exc:
        logger.error("Reply error in /%s: %s", command, exc)


def register_member_commands(bot: PaymentRoleBot, *, guild: discord.abc.Snowflake) -> None:
    @app_commands.command(name="verify", description="Link your Stripe email to your Discord account")
    @app_commands.describe(email="Your Stripe email address")
    async def verify(interaction: discord.Interaction, email: str) -> None:
        reply = await run_verify(bot.engine, member_id=str(interaction.user.id), email=email)
        await send_ephemeral(interaction, reply, command="verify")
        logger.info("/verify by %s for %s", interaction.user, email)

    @app_commands.command(name="unverify", description="Unlink your Stripe email from your Discord account")
    @app_commands.describe(email="The email to unlink")
    async def unverify(interaction: discord.Interaction, email: str) -> None:
        reply = await run_unverify(bot.engine, member_id=str(interaction.user.id), email=email)
        await send_ephemeral(interaction, reply, command="unverify")

    @app_commands.command(name="checkpayment", description="Check your Stripe payment status to assign your role")
    @app_commands.describe(email="The email used for your Stripe payment")
    async def checkpayment(interaction: discord.Interaction, email: str) -> None:
        # Stripe lookups can outlive the 3s interaction deadline.
        try:
            await interaction.response.defer(ephemeral=True, thinking=True)
        except discord.HTTPException as exc:
            logger.error("Defer error in /checkpayment: %s", exc)
        reply = await run_checkpayment(bot.engine, member_id=str(interaction.user.id), email=email)
        await send_ephemeral(interaction, reply, command="checkpayment")

    for command in (verify, unverify, checkpayment):
        bot.tree.add_command(command, guild=guild)
