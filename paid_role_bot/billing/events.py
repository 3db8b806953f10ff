from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Protocol

import stripe

from ..common import dig, normalize_email
from ..errors import EntitlementQueryFailed, SignatureVerificationFailed


logger = logging.getLogger("paid_role_bot.billing")


class EventKind(str, Enum):
    CHECKOUT_COMPLETED = "checkout-completed"
    INVOICE_SUCCEEDED = "invoice-succeeded"
    INVOICE_FAILED = "invoice-failed"
    PAYMENT_FAILED = "payment-failed"
    SUBSCRIPTION_DELETED = "subscription-deleted"


class SubscriptionMode(str, Enum):
    ONE_TIME = "one-time"
    RECURRING = "recurring"


STRIPE_EVENT_KINDS: dict[str, EventKind] = {
    "checkout.session.completed": EventKind.CHECKOUT_COMPLETED,
    "invoice.payment_succeeded": EventKind.INVOICE_SUCCEEDED,
    "invoice.payment_failed": EventKind.INVOICE_FAILED,
    "payment_intent.payment_failed": EventKind.PAYMENT_FAILED,
    "customer.subscription.deleted": EventKind.SUBSCRIPTION_DELETED,
}

_CHECKOUT_MODES = {
    "payment": SubscriptionMode.ONE_TIME,
    "subscription": SubscriptionMode.RECURRING,
}


@dataclass(slots=True, frozen=True)
class PaymentEvent:
    kind: EventKind
    email: str | None
    subscription_mode: SubscriptionMode | None = None
    event_id: str = ""
    event_type: str = ""


def verify_webhook_payload(payload: bytes, signature: str, secret: str, *, tolerance: int = 300) -> dict[str, Any]:
    """Check the Stripe-Signature header against the raw body, then parse it.

    Raises SignatureVerificationFailed for a bad signature and ValueError when the verified
    body is not a JSON object.
    """
    try:
        text = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(text, signature, secret, tolerance)
    except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
        raise SignatureVerificationFailed(str(exc)) from exc
    event = json.loads(text)
    if not isinstance(event, dict):
        raise ValueError("webhook body must be a JSON object")
    return event


def _first_email(obj: Mapping[str, Any], paths: tuple[tuple[str | int, ...], ...]) -> str | None:
    for path in paths:
        email = normalize_email(dig(obj, *path))
        if email:
            return email
    return None


def _direct_email(obj: Mapping[str, Any]) -> str | None:
    return _first_email(obj, (("customer_email",), ("receipt_email",), ("email",)))


def _nested_email(obj: Mapping[str, Any]) -> str | None:
    return _first_email(
        obj,
        (
            ("customer_details", "email"),
            ("billing_details", "email"),
            ("charges", "data", 0, "billing_details", "email"),
            ("latest_charge", "billing_details", "email"),
            ("customer", "email"),
        ),
    )


_PAYLOAD_EMAIL_RESOLVERS: tuple[Callable[[Mapping[str, Any]], str | None], ...] = (
    _direct_email,
    _nested_email,
)


class CustomerLookup(Protocol):
    async def customer_email(self, customer_id: str) -> str | None: ...


class EventNormalizer:
    def __init__(self, customers: CustomerLookup) -> None:
        self.customers = customers

    async def normalize(self, raw_event: Mapping[str, Any]) -> PaymentEvent | None:
        event_type = str(raw_event.get("type") or "")
        kind = STRIPE_EVENT_KINDS.get(event_type)
        if kind is None:
            return None

        obj = dig(raw_event, "data", "object")
        if not isinstance(obj, Mapping):
            obj = {}

        mode: SubscriptionMode | None = None
        if kind is EventKind.CHECKOUT_COMPLETED:
            mode = _CHECKOUT_MODES.get(str(obj.get("mode") or ""))

        return PaymentEvent(
            kind=kind,
            email=await self._resolve_email(obj),
            subscription_mode=mode,
            event_id=str(raw_event.get("id") or ""),
            event_type=event_type,
        )

    async def _resolve_email(self, obj: Mapping[str, Any]) -> str | None:
        for resolver in _PAYLOAD_EMAIL_RESOLVERS:
            email = resolver(obj)
            if email:
                return email
        return await self._lookup_customer_email(obj)

    async def _lookup_customer_email(self, obj: Mapping[str, Any]) -> str | None:
        customer_id = obj.get("customer")
        if not isinstance(customer_id, str) or not customer_id:
            return None
        try:
            email = await self.customers.customer_email(customer_id)
        except EntitlementQueryFailed as exc:
            logger.error("Failed to fetch customer email for %s: %s", customer_id, exc)
            return None
        if email:
            logger.info("Fetched email from customer object %s: %s", customer_id, email)
        return email or None
