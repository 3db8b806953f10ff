from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


def _clean_token(value: str) -> str:
    cleaned = value.strip()
    if cleaned.lower().startswith("bot "):
        cleaned = cleaned[4:].strip()
    if (cleaned.startswith('"') and cleaned.endswith('"')) or (
        cleaned.startswith("'") and cleaned.endswith("'")
    ):
        cleaned = cleaned[1:-1].strip()
    return cleaned


@dataclass(slots=True)
class Settings:
    discord_token: str
    guild_id: int
    role_id: int
    discord_members_intent: bool

    stripe_secret_key: str
    stripe_webhook_secret: str
    stripe_webhook_tolerance_seconds: int
    stripe_timeout_seconds: float
    checkout_lookback_limit: int

    identity_cache_path: Path
    record_store_backend: str
    sqlite_path: Path
    postgres_dsn: str

    webhook_host: str
    webhook_port: int

    log_level: str
    log_file: str
    log_max_bytes: int
    log_backup_count: int
    alert_webhook_url: str
    app_env: str

    @classmethod
    def from_env(cls) -> "Settings":
        # An explicitly empty LOG_FILE turns file logging off.
        raw_log_file = _env_lookup("LOG_FILE")
        return cls(
            discord_token=_clean_token(_env_lookup("DISCORD_TOKEN") or ""),
            guild_id=_env_int("GUILD_ID", 0),
            role_id=_env_int("ROLE_ID", 0),
            discord_members_intent=_env_bool("DISCORD_MEMBERS_INTENT", True),
            stripe_secret_key=_env_str("STRIPE_SECRET_KEY", ""),
            stripe_webhook_secret=_env_str("STRIPE_WEBHOOK_SECRET", ""),
            stripe_webhook_tolerance_seconds=_env_int("STRIPE_WEBHOOK_TOLERANCE_SECONDS", 300),
            stripe_timeout_seconds=_env_float("STRIPE_TIMEOUT_SECONDS", 20.0),
            checkout_lookback_limit=_env_int("CHECKOUT_LOOKBACK_LIMIT", 10),
            identity_cache_path=Path(
                _env_str("IDENTITY_CACHE_PATH", "./data/verified_users.json", aliases=("VERIFIED_USERS_FILE",))
            ).expanduser(),
            record_store_backend=_env_str("RECORD_STORE_BACKEND", "sqlite").lower(),
            sqlite_path=Path(_env_str("SQLITE_PATH", "./data/identities.db")).expanduser(),
            postgres_dsn=_env_str("POSTGRES_DSN", ""),
            webhook_host=_env_str("WEBHOOK_HOST", "0.0.0.0"),
            webhook_port=_env_int("PORT", 10000, aliases=("WEBHOOK_PORT",)),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
            log_file="./logs/bot.log" if raw_log_file is None else raw_log_file.strip(),
            log_max_bytes=_env_int("LOG_MAX_BYTES", 5 * 1024 * 1024),
            log_backup_count=_env_int("LOG_BACKUP_COUNT", 5),
            alert_webhook_url=_env_str("ALERT_WEBHOOK_URL", ""),
            app_env=_env_str("APP_ENV", "production", aliases=("NODE_ENV",)),
        )

    def validate(self) -> None:
        if not self.discord_token:
            raise ValueError("DISCORD_TOKEN is required")
        if self.discord_token == "put_your_discord_bot_token_here":
            raise ValueError("DISCORD_TOKEN is still placeholder")
        if self.guild_id <= 0:
            raise ValueError("GUILD_ID must be a Discord guild id")
        if self.role_id <= 0:
            raise ValueError("ROLE_ID must be a Discord role id")

        if not self.stripe_secret_key:
            raise ValueError("STRIPE_SECRET_KEY is required")
        if self.stripe_timeout_seconds <= 0:
            raise ValueError("STRIPE_TIMEOUT_SECONDS must be > 0")
        if self.stripe_webhook_tolerance_seconds < 0:
            raise ValueError("STRIPE_WEBHOOK_TOLERANCE_SECONDS must be >= 0")
        if not 1 <= self.checkout_lookback_limit <= 100:
            raise ValueError("CHECKOUT_LOOKBACK_LIMIT must be in [1, 100]")

        if self.record_store_backend not in {"sqlite", "postgres"}:
            raise ValueError("RECORD_STORE_BACKEND must be 'sqlite' or 'postgres'")
        if self.record_store_backend == "postgres" and not self.postgres_dsn:
            raise ValueError("POSTGRES_DSN is required when RECORD_STORE_BACKEND=postgres")

        if not 1 <= self.webhook_port <= 65535:
            raise ValueError("PORT must be in [1, 65535]")
        if self.log_max_bytes < 0:
            raise ValueError("LOG_MAX_BYTES must be >= 0")
        if self.log_backup_count < 0:
            raise ValueError("LOG_BACKUP_COUNT must be >= 0")
