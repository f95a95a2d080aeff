"""Authoring rules for nano-lesson prompts.

Every rule runs on every prompt; errors block the prompt, warnings are
advisory. Rule and token order below is the order messages are reported in.
"""

import re
from dataclasses import dataclass, field
from typing import List, Tuple

# Canonical audience phrase every nano prompt must name
AUDIENCE_PHRASE = "final-year high school and first-year university students"

MIN_PROMPT_CHARS = 80

# Multi-line equation/case environments and tagged equations do not render
# in the lesson viewer.
DISALLOWED_MARKUP: Tuple[str, ...] = (
    "\\begin{align}",
    "\\begin{align*}",
    "\\begin{equation}",
    "\\begin{equation*}",
    "\\begin{eqnarray}",
    "\\begin{gather}",
    "\\begin{multline}",
    "\\begin{cases}",
    "\\tag{",
)

TONE_FLAGS: Tuple[str, ...] = (
    "obviously",
    "trivially",
    "it is easy to see",
    "it's easy",
    "everyone knows",
    "any student should know",
    "you should already know",
    "this is basic",
    "just memorise",
    "just memorize",
)

WORKED_EXAMPLE_PHRASES: Tuple[str, ...] = (
    "worked example",
    "worked solution",
    "solved example",
    "example solution",
    "step-by-step solution",
    "fully worked",
)

DIAGNOSTIC_PHRASES: Tuple[str, ...] = (
    "check your understanding",
    "check understanding",
    "self-check",
    "quick check",
    "concept check",
    "diagnostic question",
)

ASSESSMENT_WORDS: Tuple[str, ...] = (
    "quiz",
    "test",
    "graded",
    "exam",
    "score",
    "marking scheme",
)

WORKED_EXAMPLE_STEP = 2
DIAGNOSTIC_STEP = 4
EXPLORATORY_STEP = 6

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class ValidationVerdict:
    ok: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def passing(cls) -> "ValidationVerdict":
        """Empty verdict for submissions that skip validation (help mode)."""
        return cls(ok=True, errors=[], warnings=[])

    def to_dict(self) -> dict:
        return {"ok": self.ok, "errors": list(self.errors), "warnings": list(self.warnings)}


def normalize_text(text: str) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    return _WHITESPACE.sub(" ", text or "").strip()


def _present(haystack: str, needles: Tuple[str, ...]) -> List[str]:
    return [needle for needle in needles if needle.lower() in haystack]


def validate_prompt(prompt: str, step: int) -> ValidationVerdict:
    """Check a nano-mode prompt for ``step`` against the authoring rules."""
    text = normalize_text(prompt)
    lowered = text.lower()
    errors: List[str] = []
    warnings: List[str] = []

    if AUDIENCE_PHRASE.lower() not in lowered:
        errors.append(f'Prompt must address "{AUDIENCE_PHRASE}".')

    if len(text) < MIN_PROMPT_CHARS:
        errors.append(
            f"Prompt is too short ({len(text)} characters); write at least {MIN_PROMPT_CHARS}."
        )

    for token in _present(lowered, DISALLOWED_MARKUP):
        errors.append(f"Remove unsupported markup: {token}")

    for phrase in _present(lowered, TONE_FLAGS):
        warnings.append(f'Tone: "{phrase}" can undermine student confidence.')

    if step == WORKED_EXAMPLE_STEP and not _present(lowered, WORKED_EXAMPLE_PHRASES):
        warnings.append("Step 2 usually includes a worked example; none was requested.")

    if step == DIAGNOSTIC_STEP and not _present(lowered, DIAGNOSTIC_PHRASES):
        errors.append('Step 4 must ask for a "Check your understanding" section.')

    if step == EXPLORATORY_STEP:
        found = _present(lowered, ASSESSMENT_WORDS)
        if found:
            warnings.append(
                "Step 6 should stay exploratory; avoid assessment language: " + ", ".join(found)
            )

    return ValidationVerdict(ok=not errors, errors=errors, warnings=warnings)
