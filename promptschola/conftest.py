# promptschola/conftest.py
import os
from typing import Dict, List, Optional

import pytest

# Settings and env validation read these at import time
os.environ.setdefault("ENV", "test")
os.environ["SKIP_ENV_VALIDATION"] = "1"
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-supabase-jwt-secret")
os.environ.setdefault("DEEPSEEK_API_KEY", "test-deepseek-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_dummy")
os.environ.setdefault("STRIPE_PRICE_MASTERY_MONTHLY", "price_mastery_monthly")

from fastapi.testclient import TestClient  # noqa: E402

from promptschola.core.auth import create_test_jwt  # noqa: E402
from promptschola.core.config import settings  # noqa: E402
from promptschola.core.database import dispose_engine, init_engine, reset_database  # noqa: E402
from promptschola.core.errors import UpstreamError  # noqa: E402
from promptschola.features.billing.provider import (  # noqa: E402
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookEvent,
    SubscriptionState,
)
from promptschola.features.billing.service import require_provider  # noqa: E402
from promptschola.features.entitlements.service import get_tier_cache  # noqa: E402
from promptschola.features.llm.provider import get_llm_provider  # noqa: E402
from promptschola.main import app  # noqa: E402


TEST_JWT_SECRET = "test-supabase-jwt-secret"


class FakeLanguageModel:
    """Records every completion request; returns canned text or fails."""

    def __init__(self, content: str = "Here is your lesson.", fail: bool = False):
        self.content = content
        self.fail = fail
        self.calls: List[dict] = []

    def complete(self, prompt, system_instructions, max_tokens=600, temperature=0.4):
        self.calls.append({
            "prompt": prompt,
            "system_instructions": system_instructions,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        if self.fail:
            raise UpstreamError("Error from language model API")
        return self.content


class FakeBillingProvider:
    """In-memory BillingProvider; webhook bodies are queued events keyed by signature."""

    def __init__(self):
        self.customers: List[dict] = []
        self.checkouts: List[dict] = []
        self.portals: List[dict] = []
        self.events: Dict[str, BillingWebhookEvent] = {}
        self.subscriptions: Dict[str, SubscriptionState] = {}
        self.fail_calls = False

    def create_customer(self, user_id: str, email: Optional[str] = None) -> str:
        if self.fail_calls:
            raise BillingProviderError("stripe down")
        customer_id = f"cus_{len(self.customers) + 1}"
        self.customers.append({"id": customer_id, "user_id": user_id, "email": email})
        return customer_id

    def create_checkout_session(self, customer_id, price_id, success_url, cancel_url, user_id) -> str:
        if self.fail_calls:
            raise BillingProviderError("stripe down")
        self.checkouts.append({
            "customer_id": customer_id,
            "price_id": price_id,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "user_id": user_id,
        })
        return f"https://checkout.stripe.test/{customer_id}"

    def create_portal_session(self, customer_id, return_url) -> str:
        if self.fail_calls:
            raise BillingProviderError("stripe down")
        self.portals.append({"customer_id": customer_id, "return_url": return_url})
        return f"https://billing.stripe.test/{customer_id}"

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionState:
        if subscription_id not in self.subscriptions:
            raise BillingProviderError(f"no such subscription: {subscription_id}")
        return self.subscriptions[subscription_id]

    def construct_event(self, headers, body) -> BillingWebhookEvent:
        signature = {k.lower(): v for k, v in headers.items()}.get("stripe-signature")
        if not signature or signature not in self.events:
            raise BillingWebhookError("Invalid signature")
        return self.events[signature]

    def queue_event(self, signature: str, event: BillingWebhookEvent) -> None:
        self.events[signature] = event


@pytest.fixture(scope="function", autouse=True)
def db():
    """Fresh in-memory SQLite database for every test."""
    init_engine("sqlite://")
    reset_database()
    yield
    dispose_engine()


@pytest.fixture(scope="function", autouse=True)
def clear_tier_cache():
    get_tier_cache().clear()
    yield
    get_tier_cache().clear()


@pytest.fixture(scope="function", autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def configured(monkeypatch):
    """Pin every credential on the shared settings object for the test."""
    monkeypatch.setattr(settings, "DATABASE_URL", "sqlite://")
    monkeypatch.setattr(settings, "SUPABASE_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setattr(settings, "DEEPSEEK_API_KEY", "test-deepseek-key")
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_dummy")
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test_dummy")
    monkeypatch.setattr(settings, "STRIPE_PRICE_MASTERY_MONTHLY", "price_mastery_monthly")
    monkeypatch.setattr(settings, "PUBLIC_BASE_URL", "https://promptschola.test")
    return settings


@pytest.fixture
def client(configured):
    return TestClient(app)


@pytest.fixture
def auth_headers():
    def _headers(sub: str = "test_user_123", email: Optional[str] = "student@example.com", **kwargs):
        token = create_test_jwt(sub=sub, email=email, secret=TEST_JWT_SECRET, **kwargs)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def fake_llm():
    llm = FakeLanguageModel()
    app.dependency_overrides[get_llm_provider] = lambda: llm
    return llm


@pytest.fixture
def fake_billing():
    provider = FakeBillingProvider()
    app.dependency_overrides[require_provider] = lambda: provider
    return provider
