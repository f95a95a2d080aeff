"""
Health probes.

- GET /healthz: process is up (no dependencies touched)
- GET /readyz: database reachable and migrated
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from promptschola.core.database import check_connection, get_engine, metadata

logger = logging.getLogger("promptschola")

router = APIRouter(tags=["health"])


def _not_ready(detail: str) -> JSONResponse:
    logger.warning(f"[readyz] {detail}")
    return JSONResponse(status_code=503, content={"status": "error", "detail": detail})


@router.get("/healthz")
def healthz():
    return {"status": "ok"}


@router.get("/readyz")
def readyz():
    """503 until every table in ``metadata`` exists; never exposes connection details."""
    if not check_connection():
        return _not_ready("database unreachable")

    try:
        inspector = inspect(get_engine())
        missing = [name for name in metadata.tables if not inspector.has_table(name)]
    except SQLAlchemyError as e:
        logger.error(f"[readyz] schema inspection failed: {e}")
        return _not_ready("schema inspection failed")

    if missing:
        return _not_ready(f"missing tables: {', '.join(sorted(missing))}")
    return {"status": "ok"}
