from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path

import discord
import uvicorn
from fastapi import FastAPI

from .billing.entitlements import EntitlementResolver
from .billing.events import EventNormalizer
from .billing.stripe_client import StripeBillingClient
from .config import Settings
from .discord.client import PaymentRoleBot
from .engine import ReconciliationEngine
from .identity.registry import IdentityRegistry
from .roles.reconciler import RoleReconciler
from .services.alerts import AlertClient
from .storage.factory import build_record_store
from .web.gateway import create_webhook_app

logger = logging.getLogger("paid_role_bot")

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(settings: Settings | None = None) -> None:
    level = logging.getLevelName(settings.log_level) if settings else logging.INFO
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)

    if settings is not None and settings.log_file:
        log_path = Path(settings.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_path,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)

    logging.getLogger("discord.gateway").setLevel(logging.WARNING)
    logging.getLogger("discord.http").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


@dataclass(slots=True)
class Runtime:
    engine: ReconciliationEngine
    bot: PaymentRoleBot
    web_app: FastAPI


def build_runtime(settings: Settings) -> Runtime:
    store = build_record_store(settings)
    identities = IdentityRegistry(settings.identity_cache_path, store)
    billing = StripeBillingClient(
        api_key=settings.stripe_secret_key,
        timeout_seconds=settings.stripe_timeout_seconds,
    )
    bot = PaymentRoleBot(settings)
    engine = ReconciliationEngine(
        record_store=store,
        identities=identities,
        entitlements=EntitlementResolver(billing, checkout_lookback_limit=settings.checkout_lookback_limit),
        normalizer=EventNormalizer(billing),
        reconciler=RoleReconciler(bot.get_guild, guild_id=settings.guild_id, role_id=settings.role_id),
        alerts=AlertClient(settings.alert_webhook_url, app_env=settings.app_env),
        community_ready=bot.is_community_ready,
    )
    bot.bind_engine(engine)
    web_app = create_webhook_app(
        engine,
        webhook_secret=settings.stripe_webhook_secret,
        signature_tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
    )
    return Runtime(engine=engine, bot=bot, web_app=web_app)


async def _run_services(settings: Settings) -> None:
    runtime = build_runtime(settings)
    await runtime.engine.start()

    server = uvicorn.Server(
        uvicorn.Config(
            runtime.web_app,
            host=settings.webhook_host,
            port=settings.webhook_port,
            lifespan="off",
            log_config=None,
        )
    )
    server_task = asyncio.create_task(server.serve(), name="webhook-server")
    logger.info("Webhook server listening on %s:%s", settings.webhook_host, settings.webhook_port)

    try:
        try:
            async with runtime.bot:
                await runtime.bot.start(settings.discord_token)
        except discord.LoginFailure as exc:
            # Keep serving /health and /backup so the outage is visible.
            logger.error("Discord login failed: %s", exc)
            await runtime.engine.alert("Discord Bot Login Failed", f"Error: {exc}")
            await server_task
    finally:
        server.should_exit = True
        with contextlib.suppress(asyncio.CancelledError):
            try:
                await asyncio.wait_for(server_task, timeout=10.0)
            except asyncio.TimeoutError:
                logger.warning("Webhook server did not stop in time")
        await runtime.engine.close()


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings)
    settings.validate()
    logger.info("Starting paid role bot (env=%s)", settings.app_env)
    try:
        asyncio.run(_run_services(settings))
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")
