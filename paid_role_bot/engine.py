from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from .billing.entitlements import EntitlementResolver
from .billing.events import EventKind, EventNormalizer, PaymentEvent, SubscriptionMode
from .common import utc_now_iso
from .errors import CommunityUnavailable
from .identity.registry import IdentityRegistry
from .roles.reconciler import RoleReconciler
from .services.alerts import AlertClient
from .storage.factory import IdentityRecordStore


logger = logging.getLogger("paid_role_bot")

GRANT_KINDS = frozenset({EventKind.CHECKOUT_COMPLETED, EventKind.INVOICE_SUCCEEDED})
REVOKE_KINDS = frozenset({EventKind.INVOICE_FAILED, EventKind.PAYMENT_FAILED, EventKind.SUBSCRIPTION_DELETED})


@dataclass(slots=True)
class HealthSnapshot:
    store_connected: bool
    community_ready: bool
    timestamp: str

    @property
    def healthy(self) -> bool:
        return self.store_connected and self.community_ready

    def as_dict(self) -> dict[str, str]:
        return {
            "store": "connected" if self.store_connected else "disconnected",
            "identity-source": "ready" if self.community_ready else "not-ready",
            "timestamp": self.timestamp,
        }


class ReconciliationEngine:
    """Single owner of identity, entitlement and role state, shared by commands and webhooks."""

    def __init__(
        self,
        *,
        record_store: IdentityRecordStore,
        identities: IdentityRegistry,
        entitlements: EntitlementResolver,
        normalizer: EventNormalizer,
        reconciler: RoleReconciler,
        alerts: AlertClient | None = None,
        community_ready: Callable[[], bool] = lambda: False,
        health_timeout_seconds: float = 5.0,
    ) -> None:
        self.record_store = record_store
        self.identities = identities
        self.entitlements = entitlements
        self.normalizer = normalizer
        self.reconciler = reconciler
        self.alerts = alerts
        self.community_ready = community_ready
        self.health_timeout_seconds = health_timeout_seconds

    async def start(self) -> None:
        if self.alerts is not None:
            await self.alerts.start()
        try:
            await self.record_store.init()
            logger.info("Connected to %s record store", self.record_store.backend_name)
        except Exception as exc:
            logger.error("Record store connection error: %s", exc)
            await self.alert("Record Store Connection Failed", f"Error: {exc}")
        await self.identities.reload()

    async def close(self) -> None:
        await self._run_shutdown_step("record_store.close", self.record_store.close(), timeout=6.0)
        if self.alerts is not None:
            await self._run_shutdown_step("alerts.close", self.alerts.close(), timeout=3.0)

    async def _run_shutdown_step(self, label: str, coro: object, *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)  # type: ignore[arg-type]
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)

    async def alert(self, subject: str, message: str) -> None:
        if self.alerts is None:
            return
        await self.alerts.send(subject, message)

    async def health(self) -> HealthSnapshot:
        try:
            await asyncio.wait_for(self.record_store.ping(), timeout=self.health_timeout_seconds)
            store_ok = True
        except Exception as exc:
            logger.warning("Record store ping failed: %s", exc)
            store_ok = False
        return HealthSnapshot(
            store_connected=store_ok,
            community_ready=bool(self.community_ready()),
            timestamp=utc_now_iso(),
        )

    async def handle_payment_event(self, event: PaymentEvent) -> str:
        """Apply a normalized payment event and return a short label of what happened.

        Skips (no email, one-time checkout, unlinked email) are acknowledged outcomes.
        Raises CommunityUnavailable when Discord is not connected so the provider retries.
        """
        if not event.email:
            logger.warning("No email found for %s (%s); skipping", event.event_type, event.event_id or "-")
            return "skipped:no-email"

        if event.kind is EventKind.CHECKOUT_COMPLETED and event.subscription_mode is not SubscriptionMode.RECURRING:
            logger.info(
                "Checkout for %s is %s; no subscription role granted",
                event.email,
                event.subscription_mode.value if event.subscription_mode else "not a subscription",
            )
            return "skipped:not-recurring"

        member_id = await self.identities.lookup(event.email)
        if member_id is None:
            logger.warning("No verified Discord user for email: %s", event.email)
            return "skipped:unlinked"

        if not self.community_ready():
            raise CommunityUnavailable("Discord connection is not ready")

        if event.kind in GRANT_KINDS:
            logger.info("Payment succeeded for %s (%s)", event.email, event.event_type)
            outcome = await self.reconciler.grant(member_id)
            return f"grant:{outcome.value}"
        if event.kind in REVOKE_KINDS:
            logger.info("Entitlement lost for %s (%s)", event.email, event.event_type)
            revoked = await self.reconciler.revoke(member_id, email=event.email)
            return f"revoke:{revoked.value}"
        return "skipped:unhandled"
