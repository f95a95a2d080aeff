"""
Billing service orchestrator.

Coordinates:
- Customer management (customer id stored on the entitlement row)
- Checkout and portal sessions
- Webhook processing into entitlement updates

All Stripe-specific code is in stripe_provider.py.
"""
import hashlib
import logging
from typing import Dict, Optional
from datetime import datetime, timezone
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from promptschola.core.config import settings, require_settings
from promptschola.core.database import get_db_session, billing_events
from promptschola.core.errors import (
    ConfigurationError,
    NoCustomerError,
    UpstreamError,
    WebhookVerificationError,
)
from promptschola.features.billing.provider import (
    BillingProvider,
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookEvent,
)
from promptschola.features.billing.stripe_provider import StripeProvider
from promptschola.features.entitlements.service import TierResolver
from promptschola.features.entitlements.store import EntitlementStore
from promptschola.features.entitlements.tiers import NormalizedTier
from promptschola.models.identity import Identity


logger = logging.getLogger(__name__)

ACTIVE_STATUSES = frozenset({"active", "trialing"})

SUBSCRIPTION_EVENTS = frozenset({
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
})


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_provider() -> Optional[BillingProvider]:
    """Get billing provider if billing is enabled."""
    if not billing_enabled():
        return None
    try:
        return StripeProvider()
    except BillingProviderError:
        return None


def require_provider() -> BillingProvider:
    """FastAPI dependency: the billing provider, or a configuration error."""
    require_settings("STRIPE_SECRET_KEY")
    provider = get_provider()
    if provider is None:
        raise ConfigurationError("Server misconfigured (billing provider unavailable)")
    return provider


def tier_for_status(status: Optional[str]) -> NormalizedTier:
    """Subscription status -> tier written to the entitlement row."""
    return NormalizedTier.PAID if status in ACTIVE_STATUSES else NormalizedTier.FREE


def _pricing_url(query: str = "") -> str:
    base = settings.PUBLIC_BASE_URL.rstrip("/")
    return f"{base}/pricing.html{query}"


def ensure_customer_for_user(identity: Identity, provider: BillingProvider, store: EntitlementStore) -> str:
    """
    Return the user's Stripe customer id, creating the customer on first use.

    A newly created customer is stored on the entitlement row; a user with no
    row yet starts at tier ``free``.
    """
    record = store.get_entitlement(identity.user_id)
    if record and record.stripe_customer_id:
        return record.stripe_customer_id

    try:
        customer_id = provider.create_customer(identity.user_id, identity.email)
    except BillingProviderError as e:
        logger.error(f"[billing] customer creation failed: {e}", extra={"user_id": identity.user_id})
        raise UpstreamError("Error from billing provider") from e

    fields = {"stripe_customer_id": customer_id}
    if record is None:
        fields["tier"] = NormalizedTier.FREE.value
    store.upsert_entitlement(identity.user_id, **fields)
    logger.info("[billing] customer created", extra={"user_id": identity.user_id})
    return customer_id


def start_checkout(identity: Identity, provider: BillingProvider, store: EntitlementStore) -> str:
    """
    Start a subscription checkout for the mastery monthly price.

    Returns:
        Checkout URL

    Raises:
        ConfigurationError: price id not configured
        UpstreamError: Stripe call failed
    """
    require_settings("STRIPE_PRICE_MASTERY_MONTHLY")
    price_id = settings.STRIPE_PRICE_MASTERY_MONTHLY

    customer_id = ensure_customer_for_user(identity, provider, store)
    try:
        return provider.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            success_url=_pricing_url("?status=success&session_id={CHECKOUT_SESSION_ID}"),
            cancel_url=_pricing_url("?status=cancel"),
            user_id=identity.user_id,
        )
    except BillingProviderError as e:
        logger.error(f"[billing] checkout failed: {e}", extra={"user_id": identity.user_id})
        raise UpstreamError("Error from billing provider") from e


def start_portal(identity: Identity, provider: BillingProvider, store: EntitlementStore) -> str:
    """
    Start a billing portal session.

    Raises:
        NoCustomerError: the user never started a checkout
        UpstreamError: Stripe call failed
    """
    record = store.get_entitlement(identity.user_id)
    if not record or not record.stripe_customer_id:
        raise NoCustomerError("No Stripe customer found for this account.")

    try:
        return provider.create_portal_session(
            customer_id=record.stripe_customer_id,
            return_url=_pricing_url(),
        )
    except BillingProviderError as e:
        logger.error(f"[billing] portal failed: {e}", extra={"user_id": identity.user_id})
        raise UpstreamError("Error from billing provider") from e


def _claim_event(event: BillingWebhookEvent, body: bytes) -> bool:
    """Record the event; False when it was already processed."""
    payload_hash = hashlib.sha256(body).hexdigest()
    with get_db_session() as session:
        existing = session.execute(
            select(billing_events.c.processed).where(
                billing_events.c.stripe_event_id == event.event_id
            )
        ).first()
        if existing:
            # Failed deliveries are retried by Stripe and reprocessed here
            return not existing.processed

    try:
        with get_db_session() as session:
            session.execute(
                insert(billing_events).values(
                    stripe_event_id=event.event_id,
                    event_type=event.event_type,
                    payload_hash=payload_hash,
                    processed=False,
                )
            )
    except IntegrityError:
        # Another worker recorded it first
        return False
    return True


def _mark_event(event_id: str, error: Optional[str] = None) -> None:
    values = {"error": error} if error else {"processed": True, "processed_at": datetime.now(timezone.utc), "error": None}
    with get_db_session() as session:
        session.execute(
            update(billing_events)
            .where(billing_events.c.stripe_event_id == event_id)
            .values(**values)
        )


def _record_failure(event_id: str, exc: Exception) -> None:
    # The caller re-raises exc; a failed write here must not replace it
    try:
        _mark_event(event_id, error=str(exc))
    except SQLAlchemyError as mark_error:
        logger.error(f"[billing] could not record failure for {event_id}: {mark_error}")


def apply_subscription_state(
    user_id: str,
    *,
    customer_id: Optional[str],
    subscription_id: Optional[str],
    status: Optional[str],
    current_period_end: Optional[datetime],
    store: EntitlementStore,
    resolver: Optional[TierResolver] = None,
) -> NormalizedTier:
    """Write the subscription's tier to the entitlement row and drop the cached tier."""
    tier = tier_for_status(status)
    store.upsert_entitlement(
        user_id,
        tier=tier.value,
        stripe_customer_id=customer_id,
        stripe_subscription_id=subscription_id,
        current_period_end=current_period_end,
    )
    if resolver is not None:
        resolver.forget(user_id)
    logger.info(
        "[billing] entitlement updated",
        extra={"user_id": user_id, "tier": tier.value, "status": status},
    )
    return tier


def _apply_event(
    event: BillingWebhookEvent,
    provider: BillingProvider,
    store: EntitlementStore,
    resolver: Optional[TierResolver],
) -> None:
    if event.event_type == "checkout.session.completed":
        if not (event.customer_id and event.subscription_id and event.user_id):
            return
        sub = provider.retrieve_subscription(event.subscription_id)
        apply_subscription_state(
            event.user_id,
            customer_id=event.customer_id,
            subscription_id=event.subscription_id,
            status=sub.status,
            current_period_end=sub.current_period_end,
            store=store,
            resolver=resolver,
        )
    elif event.event_type in SUBSCRIPTION_EVENTS:
        if not event.customer_id:
            return
        user_id = store.find_user_by_customer(event.customer_id)
        if not user_id:
            logger.warning("[billing] no entitlement row for customer", extra={"event_type": event.event_type})
            return
        apply_subscription_state(
            user_id,
            customer_id=event.customer_id,
            subscription_id=event.subscription_id,
            status=event.status,
            current_period_end=event.current_period_end,
            store=store,
            resolver=resolver,
        )


def process_webhook_event(
    headers: Dict[str, str],
    body: bytes,
    *,
    provider: BillingProvider,
    store: EntitlementStore,
    resolver: Optional[TierResolver] = None,
) -> BillingWebhookEvent:
    """
    Process billing webhook event (idempotent).

    1. Verify signature
    2. Skip events already processed
    3. Apply entitlement changes
    4. Mark as processed

    Raises:
        WebhookVerificationError: signature invalid or payload unreadable
    """
    try:
        event = provider.construct_event(headers, body)
    except BillingWebhookError as e:
        logger.warning(f"[billing] webhook verification failed: {e}")
        raise WebhookVerificationError("Webhook Error") from e

    if not _claim_event(event, body):
        logger.info("[billing] duplicate webhook skipped", extra={"event_type": event.event_type})
        return event

    try:
        _apply_event(event, provider, store, resolver)
    except BillingProviderError as e:
        _record_failure(event.event_id, e)
        raise UpstreamError("Error from billing provider") from e
    except Exception as e:
        _record_failure(event.event_id, e)
        raise
    _mark_event(event.event_id)
    return event
