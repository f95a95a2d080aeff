"""
Auth utilities for the PromptSchola API.

Validates Supabase access tokens (HS256 JWTs signed with the project's JWT
secret) and exposes the caller as an Identity.
"""
import re
import time
from typing import Any, Dict, Optional, Protocol
import logging

import jwt
from fastapi import Depends, Request

from promptschola.core.config import settings, require_settings
from promptschola.core.errors import AuthRequiredError, InvalidSessionError
from promptschola.models.identity import Identity

logger = logging.getLogger(__name__)

_BEARER = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


def get_bearer_token(request: Request) -> Optional[str]:
    """Return the bearer token from the Authorization header, if any."""
    auth = request.headers.get("authorization") or ""
    match = _BEARER.match(auth)
    if not match:
        return None
    token = match.group(1).strip()
    return token or None


class IdentityProvider(Protocol):
    def verify(self, token: str) -> Identity:
        """
        Verify a bearer token.

        Raises:
            InvalidSessionError: token invalid, expired, or missing a subject
        """
        ...


class SupabaseIdentityProvider:
    """Verify Supabase access tokens locally with the project JWT secret."""

    def __init__(self, jwt_secret: Optional[str] = None, audience: Optional[str] = None):
        self.jwt_secret = jwt_secret or settings.SUPABASE_JWT_SECRET
        self.audience = audience or settings.SUPABASE_JWT_AUDIENCE

    def verify(self, token: str) -> Identity:
        try:
            claims = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=["HS256"],
                audience=self.audience,
                options={"verify_signature": True, "verify_exp": True},
            )
        except jwt.ExpiredSignatureError:
            raise InvalidSessionError("Your session is invalid or expired. Please sign in again.")
        except jwt.InvalidTokenError as e:
            logger.debug(f"Invalid token: {e}")
            raise InvalidSessionError("Your session is invalid or expired. Please sign in again.")

        user_id = claims.get("sub")
        if not user_id:
            raise InvalidSessionError("Your session is invalid or expired. Please sign in again.")
        return Identity(user_id=str(user_id), email=claims.get("email"))


def get_identity_provider() -> IdentityProvider:
    """FastAPI dependency; overridden in tests."""
    require_settings("SUPABASE_JWT_SECRET")
    return SupabaseIdentityProvider()


def get_current_identity(
    request: Request,
    provider: IdentityProvider = Depends(get_identity_provider),
) -> Identity:
    """Require a valid bearer token and return the caller's identity."""
    token = get_bearer_token(request)
    if not token:
        raise AuthRequiredError("Sign in required")
    identity = provider.verify(token)
    request.state.user_id = identity.user_id
    return identity


def get_optional_identity_provider() -> Optional[IdentityProvider]:
    """Like get_identity_provider, but None instead of a config error."""
    if not settings.SUPABASE_JWT_SECRET:
        return None
    return SupabaseIdentityProvider()


def get_optional_identity(
    request: Request,
    provider: Optional[IdentityProvider] = Depends(get_optional_identity_provider),
) -> Optional[Identity]:
    """Identity when a valid bearer token is present, otherwise None.

    Never raises: anonymous analytics must not fail on a stale token or an
    unconfigured identity provider.
    """
    token = get_bearer_token(request)
    if not token or provider is None:
        return None
    try:
        identity = provider.verify(token)
    except InvalidSessionError:
        return None
    request.state.user_id = identity.user_id
    return identity


# ============================================================================
# Test Helpers (deterministic, no network)
# ============================================================================

def create_test_jwt(
    sub: str = "test_user_123",
    email: Optional[str] = "student@example.com",
    exp_minutes: int = 60,
    secret: str = "test-supabase-jwt-secret",
    audience: str = "authenticated",
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """Create a Supabase-shaped access token signed with HS256."""
    now = int(time.time())
    payload: Dict[str, Any] = {
        "sub": sub,
        "email": email,
        "aud": audience,
        "role": "authenticated",
        "iat": now,
        "exp": now + (exp_minutes * 60),
    }
    if extra_claims:
        payload.update(extra_claims)
    return jwt.encode(payload, secret, algorithm="HS256")
