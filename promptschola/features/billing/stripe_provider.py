"""
Stripe billing provider implementation.

Implements BillingProvider protocol using the Stripe API.
Handles webhook signature verification and event parsing.
"""
import json
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import stripe

from promptschola.core.config import settings
from promptschola.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookEvent,
    SubscriptionState,
)


def _from_epoch(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY)
            webhook_secret: Stripe webhook secret (defaults to STRIPE_WEBHOOK_SECRET)
        """
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key
        stripe.api_version = settings.STRIPE_API_VERSION

    def create_customer(self, user_id: str, email: Optional[str] = None) -> str:
        """Create Stripe customer tagged with the Supabase user id."""
        customer_data: Dict[str, Any] = {"metadata": {"supabase_user_id": user_id}}
        if email:
            customer_data["email"] = email
        try:
            customer = stripe.Customer.create(**customer_data)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe customer creation failed: {e}")
        return customer.id

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        user_id: str,
    ) -> str:
        """Create Stripe subscription checkout session."""
        try:
            session = stripe.checkout.Session.create(
                mode="subscription",
                customer=customer_id,
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                allow_promotion_codes=True,
                client_reference_id=user_id,
                metadata={"supabase_user_id": user_id},
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")
        return session.url

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create Stripe billing portal session."""
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe portal session creation failed: {e}")
        return session.url

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionState:
        try:
            sub = stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription lookup failed: {e}")
        return SubscriptionState(
            subscription_id=subscription_id,
            status=getattr(sub, "status", None),
            current_period_end=_from_epoch(getattr(sub, "current_period_end", None)),
        )

    def construct_event(self, headers: Dict[str, str], body: bytes) -> BillingWebhookEvent:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        lowered = {k.lower(): v for k, v in headers.items()}
        sig_header = lowered.get("stripe-signature")
        if not sig_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            stripe.Webhook.construct_event(body, sig_header, self.webhook_secret)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")

        # Signature covers these exact bytes; parse them as plain JSON
        try:
            event = json.loads(body)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        return parse_stripe_event(event)


def parse_stripe_event(event: Dict[str, Any]) -> BillingWebhookEvent:
    """Reduce a Stripe event dict to a BillingWebhookEvent."""
    event_type = event.get("type") or ""
    data = (event.get("data") or {}).get("object") or {}
    result = BillingWebhookEvent(event_id=event.get("id") or "", event_type=event_type)

    if event_type == "checkout.session.completed":
        metadata = data.get("metadata") or {}
        result.customer_id = data.get("customer")
        result.subscription_id = data.get("subscription")
        result.user_id = metadata.get("supabase_user_id") or data.get("client_reference_id")
    elif event_type.startswith("customer.subscription."):
        result.customer_id = data.get("customer")
        result.subscription_id = data.get("id")
        result.status = data.get("status")
        result.current_period_end = _from_epoch(data.get("current_period_end"))

    return result
