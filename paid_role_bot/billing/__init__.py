from .entitlements import EntitlementDecision, EntitlementReason, EntitlementResolver
from .events import EventKind, EventNormalizer, PaymentEvent, SubscriptionMode, verify_webhook_payload
from .stripe_client import BillingCustomer, StripeBillingClient

__all__ = [
    "BillingCustomer",
    "EntitlementDecision",
    "EntitlementReason",
    "EntitlementResolver",
    "EventKind",
    "EventNormalizer",
    "PaymentEvent",
    "StripeBillingClient",
    "SubscriptionMode",
    "verify_webhook_payload",
]
