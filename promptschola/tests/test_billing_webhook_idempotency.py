"""Stripe webhook processing: verification, entitlement updates, dedupe."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from promptschola.core.config import settings
from promptschola.core.database import billing_events, get_db_session
from promptschola.core.errors import UpstreamError
from promptschola.features.billing.provider import BillingWebhookEvent, SubscriptionState
from promptschola.features.billing import service as billing_service
from promptschola.features.billing.service import process_webhook_event, tier_for_status
from promptschola.features.entitlements.service import get_tier_cache
from promptschola.features.entitlements.store import SqlEntitlementStore
from promptschola.features.entitlements.tiers import NormalizedTier

PERIOD_END = datetime(2030, 1, 1, tzinfo=timezone.utc)


def _post(client, signature="sig_ok", body=b'{"id": "evt"}'):
    return client.post("/api/stripe-webhook", content=body, headers={"stripe-signature": signature})


def _events():
    with get_db_session() as session:
        return session.execute(select(billing_events)).fetchall()


@pytest.mark.parametrize(
    "status, tier",
    [
        ("active", NormalizedTier.PAID),
        ("trialing", NormalizedTier.PAID),
        ("past_due", NormalizedTier.FREE),
        ("canceled", NormalizedTier.FREE),
        ("incomplete", NormalizedTier.FREE),
        (None, NormalizedTier.FREE),
    ],
)
def test_tier_for_status(status, tier):
    assert tier_for_status(status) is tier


def test_bad_signature_is_rejected(client, fake_billing):
    resp = _post(client, signature="forged")

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "WEBHOOK_INVALID"
    assert _events() == []


def test_missing_webhook_secret_is_misconfig(client, fake_billing, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", None)
    resp = _post(client)
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "SERVER_MISCONFIG"


def test_checkout_completed_grants_paid(client, fake_billing):
    fake_billing.subscriptions["sub_1"] = SubscriptionState("sub_1", "active", PERIOD_END)
    fake_billing.queue_event(
        "sig_ok",
        BillingWebhookEvent(
            event_id="evt_1",
            event_type="checkout.session.completed",
            customer_id="cus_1",
            subscription_id="sub_1",
            user_id="student_1",
        ),
    )
    get_tier_cache().put("student_1", NormalizedTier.FREE)

    resp = _post(client)

    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    record = SqlEntitlementStore().get_entitlement("student_1")
    assert record.tier == "paid"
    assert record.stripe_customer_id == "cus_1"
    assert record.stripe_subscription_id == "sub_1"
    assert get_tier_cache().get("student_1") is None
    assert _events()[0].processed is True


def test_subscription_deleted_downgrades(client, fake_billing):
    SqlEntitlementStore().upsert_entitlement("student_2", tier="paid", stripe_customer_id="cus_2")
    fake_billing.queue_event(
        "sig_ok",
        BillingWebhookEvent(
            event_id="evt_2",
            event_type="customer.subscription.deleted",
            customer_id="cus_2",
            subscription_id="sub_2",
            status="canceled",
        ),
    )

    assert _post(client).status_code == 200
    assert SqlEntitlementStore().get_entitlement("student_2").tier == "free"


def test_subscription_event_for_unknown_customer_is_ignored(client, fake_billing):
    fake_billing.queue_event(
        "sig_ok",
        BillingWebhookEvent(
            event_id="evt_3",
            event_type="customer.subscription.updated",
            customer_id="cus_unknown",
            status="active",
        ),
    )

    assert _post(client).status_code == 200
    assert SqlEntitlementStore().find_user_by_customer("cus_unknown") is None


def test_duplicate_event_is_applied_once(fake_billing):
    store = SqlEntitlementStore()
    store.upsert_entitlement("student_3", tier="free", stripe_customer_id="cus_3")
    event = BillingWebhookEvent(
        event_id="evt_dup",
        event_type="customer.subscription.updated",
        customer_id="cus_3",
        subscription_id="sub_3",
        status="active",
    )
    fake_billing.queue_event("sig_ok", event)
    headers = {"stripe-signature": "sig_ok"}

    process_webhook_event(headers, b"{}", provider=fake_billing, store=store)
    assert store.get_entitlement("student_3").tier == "paid"

    # Manual downgrade; a replay must not re-apply the old event
    store.upsert_entitlement("student_3", tier="free")
    process_webhook_event(headers, b"{}", provider=fake_billing, store=store)

    assert store.get_entitlement("student_3").tier == "free"
    assert len(_events()) == 1


def test_failed_event_is_retried(fake_billing):
    store = SqlEntitlementStore()
    event = BillingWebhookEvent(
        event_id="evt_retry",
        event_type="checkout.session.completed",
        customer_id="cus_4",
        subscription_id="sub_missing",
        user_id="student_4",
    )
    fake_billing.queue_event("sig_ok", event)
    headers = {"stripe-signature": "sig_ok"}

    with pytest.raises(UpstreamError):
        process_webhook_event(headers, b"{}", provider=fake_billing, store=store)
    failed = _events()[0]
    assert failed.processed is False
    assert "sub_missing" in failed.error

    fake_billing.subscriptions["sub_missing"] = SubscriptionState("sub_missing", "trialing", PERIOD_END)
    process_webhook_event(headers, b"{}", provider=fake_billing, store=store)

    assert store.get_entitlement("student_4").tier == "paid"
    assert _events()[0].processed is True


def test_provider_failure_during_webhook_is_upstream(client, fake_billing):
    fake_billing.queue_event(
        "sig_ok",
        BillingWebhookEvent(
            event_id="evt_5",
            event_type="checkout.session.completed",
            customer_id="cus_5",
            subscription_id="sub_unknown",
            user_id="student_5",
        ),
    )
    resp = _post(client)
    assert resp.status_code == 502
    assert resp.json()["error"]["code"] == "UPSTREAM_UNAVAILABLE"


def _unwritable_mark(event_id, error=None):
    raise OperationalError("UPDATE billing_events", {}, Exception("database is down"))


def test_failure_bookkeeping_error_keeps_provider_error(fake_billing, monkeypatch):
    fake_billing.queue_event(
        "sig_ok",
        BillingWebhookEvent(
            event_id="evt_6",
            event_type="checkout.session.completed",
            customer_id="cus_6",
            subscription_id="sub_unknown",
            user_id="student_6",
        ),
    )
    monkeypatch.setattr(billing_service, "_mark_event", _unwritable_mark)

    with pytest.raises(UpstreamError):
        process_webhook_event({"stripe-signature": "sig_ok"}, b"{}", provider=fake_billing, store=SqlEntitlementStore())


def test_failure_bookkeeping_error_keeps_original_error(fake_billing, monkeypatch):
    class BrokenStore(SqlEntitlementStore):
        def find_user_by_customer(self, customer_id):
            raise RuntimeError("store exploded")

    fake_billing.queue_event(
        "sig_ok",
        BillingWebhookEvent(
            event_id="evt_7",
            event_type="customer.subscription.updated",
            customer_id="cus_7",
            subscription_id="sub_7",
            status="active",
        ),
    )
    monkeypatch.setattr(billing_service, "_mark_event", _unwritable_mark)

    with pytest.raises(RuntimeError, match="store exploded"):
        process_webhook_event({"stripe-signature": "sig_ok"}, b"{}", provider=fake_billing, store=BrokenStore())
