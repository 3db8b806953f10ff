from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable

import stripe

from ..common import normalize_email
from ..errors import EntitlementQueryFailed


logger = logging.getLogger("paid_role_bot.billing")


@dataclass(slots=True, frozen=True)
class BillingCustomer:
    customer_id: str
    email: str


class StripeBillingClient:
    """Async facade over the blocking Stripe SDK.

    Every call runs in a worker thread and is bounded by ``timeout_seconds``. Stripe errors
    and timeouts both surface as EntitlementQueryFailed.
    """

    def __init__(self, *, api_key: str, timeout_seconds: float = 20.0) -> None:
        self.api_key = api_key
        self.timeout_seconds = max(0.05, float(timeout_seconds))

    async def _call(self, label: str, func: Callable[..., Any], /, **params: Any) -> Any:
        request = functools.partial(func, api_key=self.api_key, **params)
        try:
            return await asyncio.wait_for(asyncio.to_thread(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise EntitlementQueryFailed(
                f"Stripe {label} timed out after {self.timeout_seconds:g}s"
            ) from exc
        except stripe.StripeError as exc:
            raise EntitlementQueryFailed(f"Stripe {label} failed: {exc}") from exc

    async def list_customers(self, email: str) -> list[BillingCustomer]:
        result = await self._call("customer list", stripe.Customer.list, email=email)
        customers: list[BillingCustomer] = []
        for customer in result.data:
            customers.append(
                BillingCustomer(
                    customer_id=str(customer.id),
                    email=normalize_email(getattr(customer, "email", None)),
                )
            )
        return customers

    async def has_active_subscription(self, customer_id: str) -> bool:
        result = await self._call(
            "subscription list",
            stripe.Subscription.list,
            customer=customer_id,
            status="active",
            limit=1,
        )
        return bool(result.data)

    async def has_paid_checkout_session(self, customer_id: str, *, limit: int = 10) -> bool:
        result = await self._call(
            "checkout session list",
            stripe.checkout.Session.list,
            customer=customer_id,
            limit=limit,
        )
        return any(getattr(session, "payment_status", None) == "paid" for session in result.data)

    async def customer_email(self, customer_id: str) -> str | None:
        customer = await self._call("customer retrieve", stripe.Customer.retrieve, id=customer_id)
        if getattr(customer, "deleted", False):
            logger.info("Stripe customer %s is deleted", customer_id)
            return None
        return normalize_email(getattr(customer, "email", None)) or None
