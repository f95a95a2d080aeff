"""
Analytics API.

- POST /api/log-event: record a lesson analytics event
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from promptschola.core.auth import get_optional_identity
from promptschola.core.config import require_settings
from promptschola.core.errors import ValidationError
from promptschola.features.analytics.service import RequestClient, record_event
from promptschola.models.identity import Identity


router = APIRouter(prefix="/api", tags=["analytics"])


class LogEventRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_type: Optional[str] = Field(None, alias="eventType")
    nano_slug: Optional[str] = Field(None, alias="nanoSlug")
    step: Optional[int] = None


@router.post("/log-event")
def log_event_endpoint(
    body: LogEventRequest,
    request: Request,
    identity: Optional[Identity] = Depends(get_optional_identity),
):
    """
    Errors:
        400: BAD_REQUEST (eventType or nanoSlug missing)
        500: ANALYTICS_WRITE_FAILED
    """
    require_settings("DATABASE_URL")
    if not body.event_type or not body.nano_slug:
        raise ValidationError("Missing eventType or nanoSlug")

    record_event(
        body.event_type,
        body.nano_slug,
        step=body.step,
        user_id=identity.user_id if identity else None,
        client=RequestClient.from_request(request),
    )
    return {"ok": True}
