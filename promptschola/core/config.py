import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

from promptschola.core.errors import ConfigurationError


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database (Supabase Postgres)
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Supabase auth
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None
    SUPABASE_JWT_SECRET: Optional[str] = None
    SUPABASE_JWT_AUDIENCE: str = "authenticated"

    # Language model (DeepSeek, OpenAI-compatible chat completions)
    DEEPSEEK_API_KEY: Optional[str] = None
    DEEPSEEK_BASE_URL: str = "https://api.deepseek.com"
    DEEPSEEK_MODEL: str = "deepseek-chat"
    LLM_TIMEOUT_SECONDS: float = 30.0

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_MASTERY_MONTHLY: Optional[str] = None
    STRIPE_API_VERSION: str = "2024-06-20"

    # App URLs
    PUBLIC_BASE_URL: str = "http://localhost:3000"
    CORS_ALLOWED_ORIGINS: str = "http://localhost:3000"  # comma-separated

    # Tier cache
    TIER_CACHE_TTL_SECONDS: float = 120.0

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()

# Keys every deployed environment needs; request handlers re-check their own subset
REQUIRED_KEYS = (
    "DATABASE_URL",
    "SUPABASE_JWT_SECRET",
    "DEEPSEEK_API_KEY",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
)


def _missing(cfg, keys) -> list:
    return [key for key in keys if not getattr(cfg, key, None)]


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Report missing REQUIRED_KEYS at startup.

    Warns by default; raises RuntimeError when strict (argument, else
    CONFIG_STRICT). Only key names are logged, never values.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("promptschola")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    missing = _missing(cfg, REQUIRED_KEYS)
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True


def require_settings(*keys: str, settings_obj: Optional[Settings] = None) -> None:
    """Raise ConfigurationError when any of ``keys`` is unset.

    Handlers call this at request entry for the keys they depend on.
    """
    cfg = settings_obj or settings
    missing = _missing(cfg, keys)
    if missing:
        raise ConfigurationError(f"Server misconfigured (missing {' or '.join(missing)})")
