"""System instructions sent with every step run.

Nano mode runs an author-written lesson prompt; help mode answers a student's
free-form question about the current step.
"""

TUTOR_SYSTEM_PROMPT = (
    "You are a friendly, rigorous physics tutor for final high school and "
    "first-year university students."
)

HELP_MODE_ADDENDUM = (
    "The student is asking for help with the current lesson step. Answer the "
    "question directly, keep it short, and do not introduce new topics."
)


def system_instructions_for(mode: str) -> str:
    if mode == "help":
        return f"{TUTOR_SYSTEM_PROMPT} {HELP_MODE_ADDENDUM}"
    return TUTOR_SYSTEM_PROMPT
