from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from ..common import normalize_email
from .stripe_client import BillingCustomer


logger = logging.getLogger("paid_role_bot.billing")


class EntitlementReason(str, Enum):
    ACTIVE_SUBSCRIPTION = "active-subscription"
    PAID_CHECKOUT = "paid-checkout"
    NO_CUSTOMER_RECORD = "no-customer-record"
    NO_ACTIVE_PAYMENT_FOUND = "no-active-payment-found"


@dataclass(slots=True, frozen=True)
class EntitlementDecision:
    active: bool
    reason: EntitlementReason
    customer_id: str | None = None


class BillingQueries(Protocol):
    async def list_customers(self, email: str) -> list[BillingCustomer]: ...

    async def has_active_subscription(self, customer_id: str) -> bool: ...

    async def has_paid_checkout_session(self, customer_id: str, *, limit: int = 10) -> bool: ...


class EntitlementResolver:
    def __init__(self, billing: BillingQueries, *, checkout_lookback_limit: int = 10) -> None:
        self.billing = billing
        self.checkout_lookback_limit = max(1, int(checkout_lookback_limit))

    async def resolve(self, email: str) -> EntitlementDecision:
        """Derive current entitlement for ``email`` from Stripe.

        Customers are checked in listing order and the first one with an active subscription
        or a paid checkout session wins. EntitlementQueryFailed from the billing client is
        left to propagate so callers can tell "could not check" apart from "inactive".
        """
        key = normalize_email(email)
        customers = await self.billing.list_customers(key)
        if not customers:
            logger.info("No Stripe customer found for %s", key)
            return EntitlementDecision(active=False, reason=EntitlementReason.NO_CUSTOMER_RECORD)

        for customer in customers:
            if await self.billing.has_active_subscription(customer.customer_id):
                logger.info("Active subscription for %s (customer %s)", key, customer.customer_id)
                return EntitlementDecision(
                    active=True,
                    reason=EntitlementReason.ACTIVE_SUBSCRIPTION,
                    customer_id=customer.customer_id,
                )
            if await self.billing.has_paid_checkout_session(
                customer.customer_id,
                limit=self.checkout_lookback_limit,
            ):
                logger.info("Paid checkout session for %s (customer %s)", key, customer.customer_id)
                return EntitlementDecision(
                    active=True,
                    reason=EntitlementReason.PAID_CHECKOUT,
                    customer_id=customer.customer_id,
                )

        logger.info("No active payment for %s across %s customer record(s)", key, len(customers))
        return EntitlementDecision(active=False, reason=EntitlementReason.NO_ACTIVE_PAYMENT_FOUND)
