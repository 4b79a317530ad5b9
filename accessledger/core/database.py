"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (SQLite file or in-memory)
- The grants table: one durable row per (user_id, product_id)
"""
import logging
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, Index, UniqueConstraint, CheckConstraint, inspect, true
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import os

from accessledger.core.config import settings
from accessledger.core.errors import StorageUnavailableError

logger = logging.getLogger(__name__)

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/").endswith("sqlite:"))


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise StorageUnavailableError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if _engine is not None:
        _engine.dispose()

    if url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,
            # Writers wait for the lock instead of failing immediately
            "timeout": settings.SQLITE_BUSY_TIMEOUT_SECONDS,
        }
        if _is_memory_sqlite(url):
            # One shared connection, otherwise every checkout sees an empty database
            _engine = create_engine(url, connect_args=connect_args, poolclass=StaticPool, echo=False)
        else:
            _engine = create_engine(
                url,
                connect_args=connect_args,
                pool_size=POOL_SIZE,
                max_overflow=MAX_OVERFLOW,
                pool_timeout=POOL_TIMEOUT,
                echo=False,
            )
    else:
        # Create engine with connection pooling
        _engine = create_engine(
            url,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


def dispose_engine() -> None:
    """Close pooled connections and forget the engine (tests, shutdown)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    try:
        metadata.create_all(bind=engine)
    except (OperationalError, InterfaceError) as e:
        raise StorageUnavailableError(f"Could not create tables: {e.orig}") from e


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


def missing_tables(required: list[str]) -> list[str]:
    """Return the names in `required` that do not exist in the database."""
    inspector = inspect(get_engine())
    return [name for name in required if not inspector.has_table(name)]


# Grants table: the single source of truth for entitlements.
# Listings per user or per product are read projections over this table.
grants = Table(
    'grants',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('product_id', String(100), nullable=False),
    Column('start_date', DateTime(timezone=True), nullable=False),
    Column('end_date', DateTime(timezone=True), nullable=False),
    Column('usage_limit', Integer, nullable=False),
    Column('usage_count', Integer, nullable=False, server_default='0'),
    Column('last_used_at', DateTime(timezone=True), nullable=True),
    Column('is_active', Boolean, nullable=False, server_default=true()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    # One grant per (user, product)
    UniqueConstraint('user_id', 'product_id', name='uq_grants_user_product'),
    CheckConstraint('usage_count >= 0 AND usage_count <= usage_limit', name='ck_grants_usage_bounds'),
    CheckConstraint('end_date >= start_date', name='ck_grants_window'),
    Index('idx_grants_user_id', 'user_id'),
    Index('idx_grants_product_id', 'product_id'),
    # Expiry sweep scans active grants by end_date
    Index('idx_grants_active_end_date', 'is_active', 'end_date'),
)
