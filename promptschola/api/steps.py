"""
Lesson step API.

- POST /api/run-step: gate, validate and run a step prompt through the model
- POST /api/validate-prompt: authoring-rule verdict only (no model call)
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field, StrictInt

from promptschola.core.auth import get_current_identity
from promptschola.features.analytics.service import RequestClient
from promptschola.features.entitlements.service import TierResolver, get_tier_resolver
from promptschola.features.llm.provider import LanguageModelProvider, get_llm_provider
from promptschola.features.prompts.validator import validate_prompt
from promptschola.features.steps.service import check_submission, run_step
from promptschola.models.identity import Identity


router = APIRouter(prefix="/api", tags=["steps"])


class RunStepRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: Optional[str] = None
    step: Optional[StrictInt] = None
    mode: Optional[str] = None
    nano_slug: Optional[str] = Field(None, alias="nanoSlug")


class ValidatePromptRequest(BaseModel):
    prompt: Optional[str] = None
    step: Optional[StrictInt] = None


@router.post("/run-step")
def run_step_endpoint(
    body: RunStepRequest,
    request: Request,
    resolver: TierResolver = Depends(get_tier_resolver),
    llm: LanguageModelProvider = Depends(get_llm_provider),
    identity: Identity = Depends(get_current_identity),
):
    """
    Returns:
        {"content", "step", "tier", "isPaid", "warnings"}

    Errors:
        400: BAD_REQUEST (prompt/step/mode)
        401: AUTH_REQUIRED / INVALID_SESSION
        402: PAYMENT_REQUIRED (with required, current, step)
        422: PROMPT_INVALID (with errors, warnings)
        502: UPSTREAM_UNAVAILABLE
    """
    submission = check_submission(body.prompt, body.step, body.mode, body.nano_slug)
    result = run_step(
        identity,
        submission,
        resolver=resolver,
        llm=llm,
        client=RequestClient.from_request(request),
    )
    return result.to_dict()


@router.post("/validate-prompt")
def validate_prompt_endpoint(body: ValidatePromptRequest):
    """Authoring preview: never calls the model, never needs a session."""
    submission = check_submission(body.prompt, body.step)
    return validate_prompt(submission.prompt, submission.step).to_dict()
