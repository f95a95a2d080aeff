import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env before settings are read
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from promptschola.core.config import settings, validate_config
from promptschola.core.logging import configure_logging
from promptschola.core.middleware.request_id import RequestIdMiddleware
from promptschola.core.validation import validate_env
from promptschola.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from promptschola.api import auth, billing, events, health, steps, tier

configure_logging(settings.ENV)
validate_env()
validate_config()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("promptschola")
    logger.info("Starting PromptSchola backend...")
    app.state.startup_time = time.time()
    try:
        yield
    finally:
        logging.getLogger("promptschola").info("Stopping PromptSchola backend...")


app = FastAPI(title="PromptSchola - Backend", lifespan=lifespan)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# CORS (origins from CORS_ALLOWED_ORIGINS)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)

app.include_router(health.router)
app.include_router(tier.router)
app.include_router(steps.router)
app.include_router(events.router)
app.include_router(auth.router)
app.include_router(billing.router)
