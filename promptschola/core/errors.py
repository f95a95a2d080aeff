"""Error taxonomy and FastAPI handlers.

Every error a handler surfaces is an ``AppError`` subclass carrying a stable
``code`` and HTTP status. Optional ``context`` is merged into the error
payload so clients can act without a second round trip (paywall details,
validator messages).
"""

import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from promptschola.core.logging import get_request_id


class AppError(Exception):
    code = "UNEXPECTED"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id
        self.context = dict(context or {})


class ConfigurationError(AppError):
    """Required deployment credentials are absent."""
    code = "SERVER_MISCONFIG"
    status_code = 500


class AuthRequiredError(AppError):
    code = "AUTH_REQUIRED"
    status_code = 401


class InvalidSessionError(AppError):
    code = "INVALID_SESSION"
    status_code = 401


class ValidationError(AppError, ValueError):
    code = "BAD_REQUEST"
    status_code = 400


class PromptRejectedError(AppError):
    """Prompt content violated one or more authoring rules."""
    code = "PROMPT_INVALID"
    status_code = 422

    def __init__(self, errors, warnings=(), **kwargs):
        kwargs.setdefault("context", {"errors": list(errors), "warnings": list(warnings)})
        super().__init__("Prompt failed validation", **kwargs)
        self.errors = list(errors)
        self.warnings = list(warnings)


class PaymentRequiredError(AppError):
    code = "PAYMENT_REQUIRED"
    status_code = 402

    def __init__(self, *, required: str, current: str, step: int, **kwargs):
        kwargs.setdefault("context", {"required": required, "current": current, "step": step})
        super().__init__(f"Step {step} requires the {required} tier", **kwargs)
        self.required = required
        self.current = current
        self.step = step


class UpstreamError(AppError):
    """Language-model or billing provider failed."""
    code = "UPSTREAM_UNAVAILABLE"
    status_code = 502


class NoCustomerError(AppError):
    code = "NO_CUSTOMER"
    status_code = 400


class WebhookVerificationError(AppError):
    """Inbound webhook failed signature verification; never processed."""
    code = "WEBHOOK_INVALID"
    status_code = 400


class AnalyticsWriteError(AppError):
    code = "ANALYTICS_WRITE_FAILED"
    status_code = 500


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str, context: Optional[Dict[str, Any]] = None) -> dict:
    error = {"code": code, "message": message, "request_id": request_id}
    if context:
        for key, value in context.items():
            error.setdefault(key, value)
    return {"error": error, "detail": message}


def _json_error(status_code: int, payload: dict, rid: str) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid, exc.context)
    logger = logging.getLogger("promptschola")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return _json_error(exc.status_code, payload, rid)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    if exc.status_code == 404:
        code = "NOT_FOUND"
    elif exc.status_code == 405:
        code = "METHOD_NOT_ALLOWED"
    else:
        code = "HTTP_ERROR"
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else "HTTP error"
    if exc.status_code == 405:
        message = "Method not allowed"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("promptschola")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = _json_error(exc.status_code, payload, rid)
    for key, value in (exc.headers or {}).items():
        response.headers[key] = value
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    message = "; ".join(problems) or "Invalid request"
    logging.getLogger("promptschola").warning(
        "request.invalid", extra={"request_id": rid, "error_code": ValidationError.code, "status": 400}
    )
    return _json_error(400, _error_payload(ValidationError.code, message, rid), rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("promptschola")
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "UNEXPECTED"})
    payload = _error_payload("UNEXPECTED", "Unexpected server error", rid)
    return _json_error(500, payload, rid)
