"""
Billing provider protocol.

Defines the interface for billing providers (Stripe).
This allows swapping providers without changing business logic.
"""
from typing import Protocol, Dict, Optional
from dataclasses import dataclass
from datetime import datetime


@dataclass
class BillingWebhookEvent:
    """Verified webhook event, reduced to the fields entitlements need."""
    event_id: str
    event_type: str
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    user_id: Optional[str] = None
    status: Optional[str] = None  # active, trialing, canceled, past_due, etc.
    current_period_end: Optional[datetime] = None


@dataclass
class SubscriptionState:
    subscription_id: str
    status: Optional[str]
    current_period_end: Optional[datetime]


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Customer creation
    - Checkout session creation
    - Portal session creation
    - Webhook signature verification and parsing
    - Subscription retrieval
    """

    def create_customer(self, user_id: str, email: Optional[str] = None) -> str:
        """
        Create a billing customer for the user.

        Returns:
            Provider customer ID (e.g., Stripe customer ID)

        Raises:
            BillingProviderError: If customer creation fails
        """
        ...

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        user_id: str,
    ) -> str:
        """
        Create a subscription checkout session.

        Returns:
            Checkout session URL

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a billing portal session for customer self-service.

        Returns:
            Portal session URL

        Raises:
            BillingProviderError: If portal session creation fails
        """
        ...

    def construct_event(self, headers: Dict[str, str], body: bytes) -> BillingWebhookEvent:
        """
        Verify webhook signature and parse event.

        Args:
            headers: HTTP headers (must include signature header)
            body: Raw webhook body (for signature verification)

        Raises:
            BillingWebhookError: If signature invalid or parsing fails
        """
        ...

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionState:
        """
        Fetch current subscription status.

        Raises:
            BillingProviderError: If the lookup fails
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class BillingWebhookError(BillingProviderError):
    """Exception for webhook verification/parsing errors."""
    pass
