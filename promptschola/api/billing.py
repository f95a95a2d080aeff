"""
Billing API routes.

Minimal surface:
- POST /api/stripe-create-checkout-session: Create checkout session
- POST /api/stripe-create-portal-session: Create portal session
- POST /api/stripe-webhook: Handle Stripe webhooks
"""
from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from promptschola.core.auth import get_current_identity
from promptschola.core.config import require_settings
from promptschola.features.billing.provider import BillingProvider
from promptschola.features.billing.service import (
    process_webhook_event,
    require_provider,
    start_checkout,
    start_portal,
)
from promptschola.features.entitlements.service import (
    TierResolver,
    get_entitlement_store,
    get_tier_resolver,
)
from promptschola.features.entitlements.store import EntitlementStore
from promptschola.models.identity import Identity


router = APIRouter(prefix="/api", tags=["billing"])


@router.post("/stripe-create-checkout-session")
def create_checkout(
    provider: BillingProvider = Depends(require_provider),
    store: EntitlementStore = Depends(get_entitlement_store),
    resolver: TierResolver = Depends(get_tier_resolver),
    identity: Identity = Depends(get_current_identity),
):
    """
    Returns:
        {"url": "https://checkout.stripe.com/..."}

    Errors:
        401: AUTH_REQUIRED / INVALID_SESSION
        500: SERVER_MISCONFIG (Stripe key or price missing)
        502: UPSTREAM_UNAVAILABLE (Stripe API error)
    """
    url = start_checkout(identity, provider, store)
    # Tier changes once the webhook lands; do not serve a stale tier meanwhile
    resolver.forget(identity.user_id)
    return {"url": url}


@router.post("/stripe-create-portal-session")
def create_portal(
    provider: BillingProvider = Depends(require_provider),
    store: EntitlementStore = Depends(get_entitlement_store),
    identity: Identity = Depends(get_current_identity),
):
    """
    Returns:
        {"url": "https://billing.stripe.com/..."}

    Errors:
        400: NO_CUSTOMER (user never checked out)
        502: UPSTREAM_UNAVAILABLE
    """
    return {"url": start_portal(identity, provider, store)}


@router.post("/stripe-webhook")
async def handle_webhook(
    request: Request,
    provider: BillingProvider = Depends(require_provider),
    store: EntitlementStore = Depends(get_entitlement_store),
    resolver: TierResolver = Depends(get_tier_resolver),
):
    """
    Verify signature, process the event idempotently and update entitlements.

    Errors:
        400: WEBHOOK_INVALID (bad signature or payload)
        500: SERVER_MISCONFIG (STRIPE_WEBHOOK_SECRET missing)
    """
    require_settings("STRIPE_WEBHOOK_SECRET")

    # Raw body is required for signature verification
    body = await request.body()
    headers = dict(request.headers)

    await run_in_threadpool(
        process_webhook_event,
        headers,
        body,
        provider=provider,
        store=store,
        resolver=resolver,
    )
    return {"received": True}
