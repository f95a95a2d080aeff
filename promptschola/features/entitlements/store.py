"""
Entitlement store protocol and SQL implementation.

The store owns the translation of driver failures into a structured
``EntitlementStoreError``; callers branch on ``kind`` rather than on the
driver's message text.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol

from sqlalchemy import select, insert, update
from sqlalchemy.exc import SQLAlchemyError

from promptschola.core.database import get_db_session, entitlements
from promptschola.models.entitlement import EntitlementRecord

# Columns callers may write through upsert_entitlement
WRITABLE_FIELDS = frozenset({
    "tier",
    "is_paid",
    "stripe_customer_id",
    "stripe_subscription_id",
    "current_period_end",
})


class EntitlementErrorKind(str, Enum):
    MISSING_TABLE = "missing_table"
    UNAVAILABLE = "unavailable"


class EntitlementStoreError(Exception):
    """Entitlement lookup or write failed."""

    def __init__(self, message: str, kind: EntitlementErrorKind = EntitlementErrorKind.UNAVAILABLE):
        super().__init__(message)
        self.kind = kind


# Driver messages seen when the entitlements table has not been migrated yet
_MISSING_TABLE_MARKERS = (
    "could not find the table",
    "no such table",
    "not found",
)


def classify_store_error(err: Any) -> EntitlementErrorKind:
    """Map a raw driver/client error onto an EntitlementErrorKind.

    Compatibility shim: PostgREST and database drivers only expose the
    missing-table condition through their message text.
    """
    msg = str(getattr(err, "message", None) or err or "").lower()
    if "relation" in msg and "does not exist" in msg:
        return EntitlementErrorKind.MISSING_TABLE
    if any(marker in msg for marker in _MISSING_TABLE_MARKERS):
        return EntitlementErrorKind.MISSING_TABLE
    return EntitlementErrorKind.UNAVAILABLE


class EntitlementStore(Protocol):
    """
    Protocol for entitlement storage.

    Implementations must raise EntitlementStoreError (never a driver
    exception) when the backing store cannot answer.
    """

    def get_entitlement(self, user_id: str) -> Optional[EntitlementRecord]:
        """Return the user's record, or None when no row exists yet."""
        ...

    def upsert_entitlement(self, user_id: str, **fields: Any) -> None:
        """Create or update the user's row with ``fields``."""
        ...

    def find_user_by_customer(self, customer_id: str) -> Optional[str]:
        """Return the user id owning a Stripe customer, if any."""
        ...


@dataclass
class SqlEntitlementStore:
    """EntitlementStore backed by the ``entitlements`` table."""

    def _wrap(self, exc: Exception, action: str) -> EntitlementStoreError:
        kind = classify_store_error(exc)
        return EntitlementStoreError(f"entitlements {action} failed: {exc}", kind=kind)

    def get_entitlement(self, user_id: str) -> Optional[EntitlementRecord]:
        try:
            with get_db_session() as session:
                row = session.execute(
                    select(
                        entitlements.c.user_id,
                        entitlements.c.tier,
                        entitlements.c.is_paid,
                        entitlements.c.stripe_customer_id,
                        entitlements.c.stripe_subscription_id,
                        entitlements.c.current_period_end,
                    ).where(entitlements.c.user_id == user_id)
                ).first()
        except SQLAlchemyError as exc:
            raise self._wrap(exc, "lookup") from exc

        if not row:
            return None
        return EntitlementRecord(
            user_id=row.user_id,
            tier=row.tier,
            is_paid=row.is_paid,
            stripe_customer_id=row.stripe_customer_id,
            stripe_subscription_id=row.stripe_subscription_id,
            current_period_end=row.current_period_end,
        )

    def upsert_entitlement(self, user_id: str, **fields: Any) -> None:
        unknown = set(fields) - WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown entitlement fields: {', '.join(sorted(unknown))}")

        values = dict(fields)
        values["updated_at"] = datetime.now(timezone.utc)
        try:
            with get_db_session() as session:
                existing = session.execute(
                    select(entitlements.c.user_id).where(entitlements.c.user_id == user_id)
                ).first()
                if existing:
                    session.execute(
                        update(entitlements)
                        .where(entitlements.c.user_id == user_id)
                        .values(**values)
                    )
                else:
                    session.execute(insert(entitlements).values(user_id=user_id, **values))
        except SQLAlchemyError as exc:
            raise self._wrap(exc, "upsert") from exc

    def find_user_by_customer(self, customer_id: str) -> Optional[str]:
        try:
            with get_db_session() as session:
                row = session.execute(
                    select(entitlements.c.user_id).where(
                        entitlements.c.stripe_customer_id == customer_id
                    )
                ).first()
        except SQLAlchemyError as exc:
            raise self._wrap(exc, "customer lookup") from exc
        return row.user_id if row else None
