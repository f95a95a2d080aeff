"""
Session API.

- POST /api/sign-out: forget the caller's cached tier and log the sign-out
"""
from fastapi import APIRouter, Depends, Request

from promptschola.core.auth import get_current_identity
from promptschola.features.analytics.service import RequestClient, record_event_safely
from promptschola.features.entitlements.service import TierResolver, get_tier_resolver
from promptschola.models.identity import Identity


router = APIRouter(prefix="/api", tags=["auth"])


@router.post("/sign-out")
def sign_out(
    request: Request,
    resolver: TierResolver = Depends(get_tier_resolver),
    identity: Identity = Depends(get_current_identity),
):
    # The identity provider owns the session itself; only local state is dropped here
    resolver.forget(identity.user_id)
    record_event_safely(
        "sign_out",
        "site",
        user_id=identity.user_id,
        client=RequestClient.from_request(request),
    )
    return {"ok": True}
