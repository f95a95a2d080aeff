"""Subscription tier normalization."""

from enum import Enum
from typing import Any, Optional


class NormalizedTier(str, Enum):
    FREE = "free"
    PAID = "paid"
    # Only produced when the caller distinguishes visitors with no identity
    ANON = "anon"


# Raw tier strings that grant paid access (compared lower-cased and trimmed)
PAID_TIERS = frozenset({"paid", "pro", "premium", "mastery"})


def _raw_tier(value: Any) -> str:
    if value is None:
        return ""
    try:
        return str(value).strip().lower()
    except Exception:
        return ""


def normalize_tier(record: Optional[Any]) -> NormalizedTier:
    """Collapse a raw entitlement record into ``free`` or ``paid``.

    ``record`` may be an EntitlementRecord, a mapping, or None. A non-blank
    ``tier`` wins; ``is_paid`` is consulted only when ``tier`` is blank.
    Never raises.
    """
    if record is None:
        return NormalizedTier.FREE

    if isinstance(record, dict):
        tier_value = record.get("tier")
        is_paid = record.get("is_paid")
    else:
        tier_value = getattr(record, "tier", None)
        is_paid = getattr(record, "is_paid", None)

    raw = _raw_tier(tier_value)
    if not raw and is_paid is True:
        raw = "paid"

    return NormalizedTier.PAID if raw in PAID_TIERS else NormalizedTier.FREE
