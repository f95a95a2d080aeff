"""
promptschola/features/steps/service.py

Run one lesson step through the language model.

Order: input checks -> tier -> prompt verdict -> paywall -> completion ->
analytics (best effort) -> response.
"""

from dataclasses import dataclass
from typing import Optional

from promptschola.core.errors import PromptRejectedError, ValidationError
from promptschola.core.logging import log_event
from promptschola.features.analytics.service import RequestClient, record_event_safely
from promptschola.features.entitlements.access import MAX_STEP, MIN_STEP, enforce_access
from promptschola.features.entitlements.service import TierResolver
from promptschola.features.entitlements.tiers import NormalizedTier
from promptschola.features.llm.prompts import system_instructions_for
from promptschola.features.llm.provider import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    LanguageModelProvider,
)
from promptschola.features.prompts.validator import ValidationVerdict, validate_prompt
from promptschola.models.identity import Identity


MODES = ("nano", "help")
DEFAULT_MODE = "nano"
DEFAULT_NANO_SLUG = "unknown"


@dataclass(frozen=True)
class StepSubmission:
    prompt: str
    step: int
    mode: str = DEFAULT_MODE
    nano_slug: Optional[str] = None


@dataclass(frozen=True)
class StepResult:
    content: str
    step: int
    tier: NormalizedTier
    warnings: list

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "step": self.step,
            "tier": self.tier.value,
            "isPaid": self.tier is NormalizedTier.PAID,
            "warnings": list(self.warnings),
        }


def check_submission(prompt, step, mode=None, nano_slug=None) -> StepSubmission:
    """Validate raw request values; raise ValidationError on bad input."""
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValidationError("Missing or invalid prompt")
    if isinstance(step, bool) or not isinstance(step, int):
        raise ValidationError("Missing or invalid step")
    if step < MIN_STEP or step > MAX_STEP:
        raise ValidationError(f"step must be between {MIN_STEP} and {MAX_STEP}")
    mode = mode or DEFAULT_MODE
    if mode not in MODES:
        raise ValidationError(f"mode must be one of {', '.join(MODES)}")
    return StepSubmission(prompt=prompt, step=step, mode=mode, nano_slug=nano_slug)


def verdict_for(submission: StepSubmission) -> ValidationVerdict:
    """Help-mode prompts are student questions and skip authoring rules."""
    if submission.mode == "help":
        return ValidationVerdict.passing()
    return validate_prompt(submission.prompt, submission.step)


def run_step(
    identity: Identity,
    submission: StepSubmission,
    *,
    resolver: TierResolver,
    llm: LanguageModelProvider,
    client: Optional[RequestClient] = None,
) -> StepResult:
    """
    Raises:
        PromptRejectedError: nano prompt broke an authoring rule
        PaymentRequiredError: step is above the caller's tier
        UpstreamError: language model failed
    """
    tier = resolver.resolve_tier(identity)

    verdict = verdict_for(submission)
    if not verdict.ok:
        raise PromptRejectedError(verdict.errors, verdict.warnings)

    enforce_access(tier, submission.step)

    content = llm.complete(
        submission.prompt,
        system_instructions_for(submission.mode),
        max_tokens=DEFAULT_MAX_TOKENS,
        temperature=DEFAULT_TEMPERATURE,
    )

    log_event(
        "info",
        "[run-step] completed",
        user_id=identity.user_id,
        event_type="run_step",
        extra={"step": submission.step, "tier": tier.value, "mode": submission.mode},
    )
    record_event_safely(
        "run_step",
        submission.nano_slug or DEFAULT_NANO_SLUG,
        step=submission.step,
        user_id=identity.user_id,
        client=client,
    )

    return StepResult(content=content, step=submission.step, tier=tier, warnings=verdict.warnings)
