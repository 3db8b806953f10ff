from __future__ import annotations

import logging

from .billing.entitlements import EntitlementReason
from .common import normalize_email
from .engine import ReconciliationEngine
from .errors import AuthorizationMismatch, EntitlementQueryFailed
from .roles.reconciler import GrantOutcome


logger = logging.getLogger("paid_role_bot.commands")

SUPPORT_REPLY = "Server error. Please contact support."


def _looks_like_email(email: str) -> bool:
    local, sep, domain = email.partition("@")
    return bool(local and sep and "." in domain and " " not in email)


async def run_verify(engine: ReconciliationEngine, *, member_id: str, email: str) -> str:
    key = normalize_email(email)
    if not _looks_like_email(key):
        return "Please provide a valid email address."
    try:
        await engine.identities.link(key, member_id)
    except Exception:
        logger.exception("/verify failed for %s (member %s)", key, member_id)
        return "Something went wrong while linking your email. Please try again."
    return (
        f"Verified! Your Discord account is now linked to {key}. "
        "Run /checkpayment to activate your role if you already paid."
    )


async def run_unverify(engine: ReconciliationEngine, *, member_id: str, email: str) -> str:
    key = normalize_email(email)
    try:
        await engine.identities.unlink(key, member_id)
    except AuthorizationMismatch:
        logger.info("/unverify refused: %s is not linked to member %s", key, member_id)
        return "That email isn't linked to your account."
    except Exception:
        logger.exception("/unverify failed for %s (member %s)", key, member_id)
        return "Something went wrong while unlinking your email. Please try again."
    return f"Unlinked {key} from your Discord account."


async def run_checkpayment(engine: ReconciliationEngine, *, member_id: str, email: str) -> str:
    key = normalize_email(email)
    try:
        linked_member = await engine.identities.lookup(key)
        if linked_member != member_id:
            return "That email isn't verified with your account. Run /verify first."

        decision = await engine.entitlements.resolve(key)
        if decision.reason is EntitlementReason.NO_CUSTOMER_RECORD:
            return f"No Stripe customer found for {key}. Ensure you used this email for payment."
        if not decision.active:
            return f"No active subscription or completed payment found for {key}."

        outcome = await engine.reconciler.grant(member_id)
    except EntitlementQueryFailed as exc:
        logger.error("Check payment error for %s: %s", key, exc)
        return "Couldn't reach Stripe to check your payment right now. Please try again in a few minutes."
    except Exception:
        logger.exception("Check payment error for %s (member %s)", key, member_id)
        return "Error checking payment. Please try again or contact support."

    if outcome is GrantOutcome.GRANTED:
        return "Payment verified! Member role assigned."
    if outcome is GrantOutcome.ALREADY_GRANTED:
        return "Payment verified! You already have the Member role."
    logger.error("Check payment for %s could not grant role to member %s: %s", key, member_id, outcome.value)
    return SUPPORT_REPLY
