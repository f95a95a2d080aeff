"""
promptschola/features/entitlements/service.py

Tier resolution.

Handles:
- Anonymous vs signed-in free callers
- Cached lookups with TTL
- Fail-open to ``free`` on any entitlement store failure
"""

from typing import Optional
import logging

from promptschola.core.config import settings, require_settings
from promptschola.features.entitlements.cache import TierCache
from promptschola.features.entitlements.store import (
    EntitlementErrorKind,
    EntitlementStore,
    EntitlementStoreError,
    SqlEntitlementStore,
)
from promptschola.features.entitlements.tiers import NormalizedTier, normalize_tier
from promptschola.models.identity import Identity


logger = logging.getLogger(__name__)


class TierResolver:
    """Resolve an identity to a NormalizedTier without ever raising."""

    def __init__(self, store: EntitlementStore, cache: Optional[TierCache] = None):
        self.store = store
        self.cache = cache

    def resolve_tier(self, identity: Optional[Identity], *, distinguish_anon: bool = False) -> NormalizedTier:
        if identity is None:
            return NormalizedTier.ANON if distinguish_anon else NormalizedTier.FREE

        user_id = identity.user_id
        if self.cache is not None:
            cached = self.cache.get(user_id)
            if cached is not None:
                return cached

        try:
            record = self.store.get_entitlement(user_id)
        except EntitlementStoreError as exc:
            logger.warning(
                "[entitlements] lookup failed, defaulting to free",
                extra={"user_id": user_id, "error_kind": exc.kind.value, "error_message": str(exc)},
            )
            if exc.kind is EntitlementErrorKind.MISSING_TABLE:
                logger.warning("[entitlements] hint: entitlements table may be missing")
            return NormalizedTier.FREE
        except Exception as exc:
            logger.warning(
                "[entitlements] lookup raised, defaulting to free",
                extra={"user_id": user_id, "error_message": str(exc)},
            )
            return NormalizedTier.FREE

        tier = normalize_tier(record)
        if self.cache is not None:
            self.cache.put(user_id, tier)
        return tier

    def forget(self, user_id: str) -> None:
        """Drop any cached tier for ``user_id`` (checkout, webhook, sign-out)."""
        if self.cache is not None:
            self.cache.invalidate(user_id)


_tier_cache: Optional[TierCache] = None


def get_tier_cache() -> TierCache:
    """Process-wide tier cache (TTL from TIER_CACHE_TTL_SECONDS)."""
    global _tier_cache
    if _tier_cache is None:
        _tier_cache = TierCache(ttl_seconds=settings.TIER_CACHE_TTL_SECONDS)
    return _tier_cache


def get_entitlement_store() -> EntitlementStore:
    """FastAPI dependency; fails at request entry when the database is unconfigured."""
    require_settings("DATABASE_URL")
    return SqlEntitlementStore()


def get_tier_resolver() -> TierResolver:
    """FastAPI dependency: SQL-backed resolver sharing the process tier cache."""
    return TierResolver(get_entitlement_store(), get_tier_cache())
