"""Checkout and portal session endpoints."""

from promptschola.core.config import settings
from promptschola.features.entitlements.service import get_tier_cache
from promptschola.features.entitlements.store import SqlEntitlementStore
from promptschola.features.entitlements.tiers import NormalizedTier


def test_checkout_creates_customer_and_session(client, auth_headers, fake_billing):
    resp = client.post("/api/stripe-create-checkout-session", headers=auth_headers())

    assert resp.status_code == 200
    assert resp.json() == {"url": "https://checkout.stripe.test/cus_1"}

    assert fake_billing.customers == [
        {"id": "cus_1", "user_id": "test_user_123", "email": "student@example.com"}
    ]
    checkout = fake_billing.checkouts[0]
    assert checkout["price_id"] == "price_mastery_monthly"
    assert checkout["user_id"] == "test_user_123"
    assert checkout["success_url"] == (
        "https://promptschola.test/pricing.html?status=success&session_id={CHECKOUT_SESSION_ID}"
    )
    assert checkout["cancel_url"] == "https://promptschola.test/pricing.html?status=cancel"

    record = SqlEntitlementStore().get_entitlement("test_user_123")
    assert record.stripe_customer_id == "cus_1"
    assert record.tier == "free"


def test_checkout_reuses_existing_customer(client, auth_headers, fake_billing):
    SqlEntitlementStore().upsert_entitlement("test_user_123", tier="paid", stripe_customer_id="cus_existing")

    resp = client.post("/api/stripe-create-checkout-session", headers=auth_headers())

    assert resp.json()["url"] == "https://checkout.stripe.test/cus_existing"
    assert fake_billing.customers == []
    assert SqlEntitlementStore().get_entitlement("test_user_123").tier == "paid"


def test_checkout_clears_cached_tier(client, auth_headers, fake_billing):
    get_tier_cache().put("test_user_123", NormalizedTier.FREE)
    client.post("/api/stripe-create-checkout-session", headers=auth_headers())
    assert get_tier_cache().get("test_user_123") is None


def test_checkout_without_price_is_misconfig(client, auth_headers, fake_billing, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_PRICE_MASTERY_MONTHLY", None)

    resp = client.post("/api/stripe-create-checkout-session", headers=auth_headers())

    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "SERVER_MISCONFIG"
    assert fake_billing.customers == []


def test_checkout_without_stripe_key_is_misconfig(client, auth_headers, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", None)

    resp = client.post("/api/stripe-create-checkout-session", headers=auth_headers())

    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "SERVER_MISCONFIG"


def test_checkout_stripe_failure_is_upstream(client, auth_headers, fake_billing):
    fake_billing.fail_calls = True
    resp = client.post("/api/stripe-create-checkout-session", headers=auth_headers())
    assert resp.status_code == 502
    assert resp.json()["error"]["code"] == "UPSTREAM_UNAVAILABLE"


def test_checkout_requires_session(client, fake_billing):
    resp = client.post("/api/stripe-create-checkout-session")
    assert resp.status_code == 401


def test_portal_without_customer(client, auth_headers, fake_billing):
    resp = client.post("/api/stripe-create-portal-session", headers=auth_headers())

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "NO_CUSTOMER"
    assert resp.json()["error"]["message"] == "No Stripe customer found for this account."


def test_portal_for_existing_customer(client, auth_headers, fake_billing):
    SqlEntitlementStore().upsert_entitlement("test_user_123", stripe_customer_id="cus_9")

    resp = client.post("/api/stripe-create-portal-session", headers=auth_headers())

    assert resp.status_code == 200
    assert resp.json() == {"url": "https://billing.stripe.test/cus_9"}
    assert fake_billing.portals == [
        {"customer_id": "cus_9", "return_url": "https://promptschola.test/pricing.html"}
    ]
