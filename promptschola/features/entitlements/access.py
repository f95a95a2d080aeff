"""Step access rule: which lesson steps each tier may run."""

from dataclasses import dataclass
from typing import Optional

from promptschola.core.errors import PaymentRequiredError
from promptschola.features.entitlements.tiers import NormalizedTier

MIN_STEP = 1
FREE_MAX_STEP = 2
MAX_STEP = 6


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    current: NormalizedTier
    step: int
    required: Optional[NormalizedTier] = None


def max_step_for(tier: NormalizedTier) -> int:
    return MAX_STEP if tier is NormalizedTier.PAID else FREE_MAX_STEP


def decide_access(tier: NormalizedTier, step: int) -> AccessDecision:
    """Allow ``step`` for ``tier`` or deny with the tier that would unlock it.

    Step range validation is the caller's job; a step above the free range is
    treated as paid-gated.
    """
    if step <= max_step_for(tier):
        return AccessDecision(allowed=True, current=tier, step=step)
    return AccessDecision(allowed=False, current=tier, step=step, required=NormalizedTier.PAID)


def enforce_access(tier: NormalizedTier, step: int) -> AccessDecision:
    """Like decide_access, but raises PaymentRequiredError on denial."""
    decision = decide_access(tier, step)
    if not decision.allowed:
        raise PaymentRequiredError(
            required=decision.required.value,
            current=decision.current.value,
            step=decision.step,
        )
    return decision
