"""
promptschola/models/entitlement.py

Entitlement record as stored per user.

Only ``tier`` and ``is_paid`` feed tier resolution; the Stripe columns are
carried for the billing flow (customer lookup, portal sessions).
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class EntitlementRecord(BaseModel):
    """
    Raw entitlement row.

    Observed tier values: free, paid, pro, premium, mastery (any casing), or
    absent. ``is_paid`` is a legacy boolean used when ``tier`` is absent.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    tier: Optional[str] = None
    is_paid: Optional[bool] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
