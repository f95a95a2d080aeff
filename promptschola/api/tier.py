"""
Tier API.

- GET /api/get-tier: signed-in caller's tier (fails open to free)
"""
from fastapi import APIRouter, Depends

from promptschola.core.auth import get_current_identity
from promptschola.features.entitlements.service import TierResolver, get_tier_resolver
from promptschola.features.entitlements.tiers import NormalizedTier
from promptschola.models.identity import Identity


router = APIRouter(prefix="/api", tags=["tier"])


@router.get("/get-tier")
def get_tier(
    resolver: TierResolver = Depends(get_tier_resolver),
    identity: Identity = Depends(get_current_identity),
):
    """
    Returns:
        {"tier": "free" | "paid", "isPaid": bool}

    Errors:
        500: SERVER_MISCONFIG (database or auth secret missing)
        401: AUTH_REQUIRED / INVALID_SESSION
    """
    tier = resolver.resolve_tier(identity)
    return {"tier": tier.value, "isPaid": tier is NormalizedTier.PAID}
