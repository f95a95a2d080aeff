"""
promptschola/features/analytics/service.py

Lesson analytics.

Handles:
- Client metadata extraction (IP, geo headers, user agent)
- Event inserts into analytics_events
- Best-effort recording for events attached to another response
"""

from dataclasses import dataclass
from typing import Optional
import logging

from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from starlette.requests import Request

from promptschola.core.database import get_db_session, analytics_events
from promptschola.core.errors import AnalyticsWriteError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestClient:
    """Who sent the request, as far as the edge network tells us."""
    ip_address: Optional[str] = None
    country: Optional[str] = None
    region: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestClient":
        forwarded = [
            part.strip()
            for part in (request.headers.get("x-forwarded-for") or "").split(",")
            if part.strip()
        ]
        ip = forwarded[0] if forwarded else (request.client.host if request.client else None)
        return cls(
            ip_address=ip,
            country=request.headers.get("x-vercel-ip-country"),
            region=request.headers.get("x-vercel-ip-country-region"),
            user_agent=request.headers.get("user-agent"),
        )


def record_event(
    event_type: str,
    nano_slug: str,
    *,
    step: Optional[int] = None,
    user_id: Optional[str] = None,
    client: Optional[RequestClient] = None,
) -> None:
    """
    Insert one analytics event.

    Raises:
        AnalyticsWriteError: if the insert fails
    """
    client = client or RequestClient()
    try:
        with get_db_session() as session:
            session.execute(
                insert(analytics_events).values(
                    user_id=user_id,
                    nano_slug=nano_slug,
                    step=step,
                    event_type=event_type,
                    ip_address=client.ip_address,
                    country=client.country,
                    region=client.region,
                    user_agent=client.user_agent,
                )
            )
    except SQLAlchemyError as e:
        logger.error(
            "[analytics] insert failed",
            extra={"event_type": event_type, "user_id": user_id, "error_message": str(e)},
        )
        raise AnalyticsWriteError("Failed to log event") from e


def record_event_safely(event_type: str, nano_slug: str, **kwargs) -> bool:
    """record_event that logs and swallows failures. Returns True on success."""
    try:
        record_event(event_type, nano_slug, **kwargs)
    except Exception as e:
        logger.warning(
            "[analytics] event dropped",
            extra={"event_type": event_type, "error_message": str(e)},
        )
        return False
    return True
