from __future__ import annotations

import asyncio
import logging
import random

import aiohttp


logger = logging.getLogger("paid_role_bot.alerts")


class AlertClient:
    """Posts operator alerts to a Discord-compatible webhook URL. Disabled when no URL is set."""

    def __init__(self, webhook_url: str, *, timeout_seconds: int = 15, app_env: str = "production") -> None:
        self.webhook_url = (webhook_url or "").strip()
        self.timeout = aiohttp.ClientTimeout(total=max(3, int(timeout_seconds)))
        self.app_env = app_env
        self._session: aiohttp.ClientSession | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def start(self) -> None:
        if not self.enabled:
            return
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def send(self, subject: str, message: str, *, retries: int = 3) -> bool:
        if not self.enabled:
            logger.info("Alert (no ALERT_WEBHOOK_URL configured): %s - %s", subject, message)
            return False
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        payload = {"content": f"**[{self.app_env}] {subject}**\n{message}"[:1900]}
        last_error: Exception | None = None
        for attempt in range(1, retries + 1):
            try:
                async with self._session.post(self.webhook_url, json=payload) as response:
                    if response.status < 300:
                        return True
                    text = await response.text()
                    retriable = response.status in {408, 429, 500, 502, 503, 504}
                    last_error = RuntimeError(f"Alert webhook error {response.status}: {text[:200]}")
                    if not retriable:
                        break
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = exc
            if attempt < retries:
                await asyncio.sleep(min(6.0, 0.8 * (2 ** (attempt - 1))) + random.uniform(0.0, 0.3))

        logger.error("Alert delivery failed for '%s': %s", subject, last_error)
        return False
