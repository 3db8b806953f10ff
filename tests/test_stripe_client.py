from __future__ import annotations

import asyncio
import sys
import time
from pathlib import Path
from types import SimpleNamespace

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

stripe = pytest.importorskip("stripe")

from paid_role_bot.billing.stripe_client import StripeBillingClient  # noqa: E402
from paid_role_bot.errors import EntitlementQueryFailed  # noqa: E402


def test_list_customers_normalizes_emails_and_passes_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, object] = {}

    def fake_list(**params):  # type: ignore[no-untyped-def]
        seen.update(params)
        return SimpleNamespace(
            data=[
                SimpleNamespace(id="cus_1", email="Alice@Example.com"),
                SimpleNamespace(id="cus_2", email=None),
            ]
        )

    monkeypatch.setattr(stripe.Customer, "list", fake_list)
    client = StripeBillingClient(api_key="sk_test_123")

    customers = asyncio.run(client.list_customers("alice@example.com"))

    assert [(c.customer_id, c.email) for c in customers] == [("cus_1", "alice@example.com"), ("cus_2", "")]
    assert seen == {"api_key": "sk_test_123", "email": "alice@example.com"}


def test_subscription_and_checkout_queries(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[dict[str, object]] = []

    def fake_subscriptions(**params):  # type: ignore[no-untyped-def]
        seen.append(params)
        return SimpleNamespace(data=[SimpleNamespace(id="sub_1")])

    def fake_sessions(**params):  # type: ignore[no-untyped-def]
        seen.append(params)
        return SimpleNamespace(
            data=[SimpleNamespace(payment_status="unpaid"), SimpleNamespace(payment_status="paid")]
        )

    monkeypatch.setattr(stripe.Subscription, "list", fake_subscriptions)
    monkeypatch.setattr(stripe.checkout.Session, "list", fake_sessions)
    client = StripeBillingClient(api_key="sk_test_123")

    assert asyncio.run(client.has_active_subscription("cus_1")) is True
    assert asyncio.run(client.has_paid_checkout_session("cus_1", limit=3)) is True
    assert seen[0]["status"] == "active"
    assert seen[0]["customer"] == "cus_1"
    assert seen[1]["limit"] == 3


def test_customer_email_handles_deleted_customer(monkeypatch: pytest.MonkeyPatch) -> None:
    customers = {
        "cus_live": SimpleNamespace(id="cus_live", email=" Bob@X.com"),
        "cus_gone": SimpleNamespace(id="cus_gone", deleted=True),
    }
    monkeypatch.setattr(stripe.Customer, "retrieve", lambda **params: customers[params["id"]])
    client = StripeBillingClient(api_key="sk_test_123")

    assert asyncio.run(client.customer_email("cus_live")) == "bob@x.com"
    assert asyncio.run(client.customer_email("cus_gone")) is None


def test_stripe_errors_become_query_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(**params):  # type: ignore[no-untyped-def]
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.Customer, "list", broken)
    client = StripeBillingClient(api_key="sk_test_123")

    with pytest.raises(EntitlementQueryFailed, match="customer list failed"):
        asyncio.run(client.list_customers("a@x.com"))


def test_slow_stripe_calls_time_out(monkeypatch: pytest.MonkeyPatch) -> None:
    def slow(**params):  # type: ignore[no-untyped-def]
        time.sleep(0.5)
        return SimpleNamespace(data=[])

    monkeypatch.setattr(stripe.Subscription, "list", slow)
    client = StripeBillingClient(api_key="sk_test_123", timeout_seconds=0.05)

    with pytest.raises(EntitlementQueryFailed, match="timed out"):
        asyncio.run(client.has_active_subscription("cus_1"))
