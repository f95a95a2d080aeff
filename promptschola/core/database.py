"""
Relational storage for PromptSchola.

SQLAlchemy Core tables plus a lazily created engine. Production talks to the
Supabase Postgres instance through a pooled engine; tests bind an in-memory
SQLite database that lives on a single shared connection.
"""
from contextlib import contextmanager
from typing import Any, Dict, Optional
import logging
import os

from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, Text, Index
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func

from promptschola.core.config import settings


logger = logging.getLogger("promptschola")

metadata = MetaData()

# Pool sizing for the server database; request handlers hold one connection each
POOL_SIZE = 5
MAX_OVERFLOW = 10
POOL_TIMEOUT = 30
POOL_RECYCLE = 1800

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_database_url() -> Optional[str]:
    """TEST_DATABASE_URL (env only) wins over DATABASE_URL."""
    return os.getenv("TEST_DATABASE_URL") or settings.DATABASE_URL


def _engine_options(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        # In-memory SQLite is per connection: share one across threads
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return {
        "poolclass": QueuePool,
        "pool_size": POOL_SIZE,
        "max_overflow": MAX_OVERFLOW,
        "pool_timeout": POOL_TIMEOUT,
        "pool_recycle": POOL_RECYCLE,
        "pool_pre_ping": True,
    }


def init_engine(database_url: Optional[str] = None) -> Engine:
    """(Re)bind the module engine and session factory to ``database_url``."""
    global _engine, _session_factory

    url = database_url or get_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not configured")

    dispose_engine()
    _engine = create_engine(url, **_engine_options(url))
    _session_factory = sessionmaker(bind=_engine, autoflush=False)
    return _engine


def dispose_engine() -> None:
    """Close pooled connections and forget the engine (tests, shutdown)."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


@contextmanager
def get_db_session():
    """
    Transactional session scope: commits on success, rolls back on error.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    if _session_factory is None:
        init_engine()
    session = _session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    """Create missing tables; existing tables are left alone."""
    metadata.create_all(bind=get_engine())


def drop_all_tables() -> None:
    """Drop every table in ``metadata``. Tests and local development only."""
    metadata.drop_all(bind=get_engine())


def reset_database() -> None:
    drop_all_tables()
    create_all_tables()


def check_connection() -> bool:
    """True when a round trip to the database succeeds."""
    try:
        with get_engine().connect() as conn:
            conn.exec_driver_sql("SELECT 1")
    except Exception as e:
        logger.warning(f"[db] connection check failed: {e}")
        return False
    return True


# Per-user subscription state, written by the Stripe webhook
entitlements = Table(
    'entitlements',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('tier', String(50), nullable=True),
    Column('is_paid', Boolean, nullable=True),
    Column('stripe_customer_id', String(100), nullable=True, unique=True),
    Column('stripe_subscription_id', String(100), nullable=True),
    Column('current_period_end', DateTime(timezone=True), nullable=True),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Lesson analytics (page views, step runs, sign-outs)
analytics_events = Table(
    'analytics_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=True, index=True),
    Column('nano_slug', String(200), nullable=False),
    Column('step', Integer, nullable=True),
    Column('event_type', String(100), nullable=False, index=True),
    Column('ip_address', String(100), nullable=True),
    Column('country', String(10), nullable=True),
    Column('region', String(50), nullable=True),
    Column('user_agent', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_analytics_events_slug_type', 'nano_slug', 'event_type'),
)

# Stripe webhook deliveries, deduplicated by event id
billing_events = Table(
    'billing_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_event_id', String(100), nullable=False, unique=True, index=True),
    Column('event_type', String(100), nullable=False),
    Column('payload_hash', String(64), nullable=False),
    Column('processed', Boolean, nullable=False, default=False),
    Column('error', Text, nullable=True),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)
