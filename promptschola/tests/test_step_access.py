"""Step access rule per tier."""

import pytest

from promptschola.core.errors import PaymentRequiredError
from promptschola.features.entitlements.access import decide_access, enforce_access
from promptschola.features.entitlements.tiers import NormalizedTier


@pytest.mark.parametrize("step", [1, 2])
@pytest.mark.parametrize("tier", list(NormalizedTier))
def test_first_two_steps_open_to_everyone(tier, step):
    decision = decide_access(tier, step)
    assert decision.allowed
    assert decision.required is None


@pytest.mark.parametrize("step", [3, 4, 5, 6])
def test_paid_tier_unlocks_later_steps(step):
    assert decide_access(NormalizedTier.PAID, step).allowed


@pytest.mark.parametrize("step", [3, 4, 5, 6])
@pytest.mark.parametrize("tier", [NormalizedTier.FREE, NormalizedTier.ANON])
def test_free_and_anon_denied_later_steps(tier, step):
    decision = decide_access(tier, step)
    assert not decision.allowed
    assert decision.required is NormalizedTier.PAID
    assert decision.current is tier
    assert decision.step == step


def test_enforce_access_raises_payment_required():
    with pytest.raises(PaymentRequiredError) as excinfo:
        enforce_access(NormalizedTier.FREE, 3)

    err = excinfo.value
    assert err.status_code == 402
    assert err.code == "PAYMENT_REQUIRED"
    assert err.context == {"required": "paid", "current": "free", "step": 3}


def test_enforce_access_returns_decision_when_allowed():
    assert enforce_access(NormalizedTier.PAID, 6).allowed
