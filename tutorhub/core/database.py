"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults (StaticPool for SQLite)
- Table definitions (SQLAlchemy Core)
- Schema utilities
"""
from typing import Optional
from contextlib import contextmanager
from datetime import datetime, timezone
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Index, ForeignKey, text
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import os

from tutorhub.core.config import settings


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


def build_engine(url: str):
    """Create an engine; SQLite URLs share one connection via StaticPool."""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        echo=False,  # Set to True for SQL query logging
    )


def build_session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    _engine = build_engine(url)
    _SessionLocal = build_session_factory(_engine)

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


@contextmanager
def session_scope(session_factory: sessionmaker):
    """
    Transactional scope around a series of operations.

    Commits on success, rolls back on any exception and always closes.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize datetimes read back from drivers that drop tzinfo (SQLite)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def create_all_tables(engine=None):
    """
    Create all tables defined in metadata.

    Safe to call multiple times (only creates missing tables).
    """
    metadata.create_all(bind=engine or get_engine())


def drop_all_tables(engine=None):
    """
    Drop all tables defined in metadata.

    WARNING: This will delete all data!
    Only use in tests or development.
    """
    metadata.drop_all(bind=engine or get_engine())


def check_connection(engine=None) -> bool:
    """
    Check if database connection is working.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        with (engine or get_engine()).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


# ============================================================================
# TABLE DEFINITIONS
# ============================================================================

users = Table(
    'users',
    metadata,
    Column('id', String(64), primary_key=True),
    Column('clerk_id', String(255), nullable=False, unique=True),
    Column('email', String(320), nullable=True),
    Column('name', String(255), nullable=True),
    Column('image_url', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

companions = Table(
    'companions',
    metadata,
    Column('id', String(64), primary_key=True),
    Column('author_id', String(64), ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('name', String(255), nullable=False),
    Column('subject', String(100), nullable=False),
    Column('topic', Text, nullable=False),
    Column('style', String(50), nullable=False),
    Column('voice', String(50), nullable=False),
    Column('duration', Integer, nullable=False),  # minutes
    Column('instructions', Text, nullable=True),
    Column('is_public', Boolean, nullable=False, default=True),
    Column('voice_assistant_id', String(255), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_companions_author', 'author_id'),
    Index('idx_companions_subject', 'subject'),
)

learning_sessions = Table(
    'learning_sessions',
    metadata,
    Column('id', String(64), primary_key=True),
    Column('user_id', String(64), ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('companion_id', String(64), ForeignKey('companions.id', ondelete='CASCADE'), nullable=False),
    Column('status', String(20), nullable=False, default='pending'),  # pending, active, completed, failed
    Column('voice_call_id', String(255), nullable=True),
    Column('started_at', DateTime(timezone=True), nullable=True),
    Column('ended_at', DateTime(timezone=True), nullable=True),
    Column('duration_minutes', Integer, nullable=True),
    Column('transcript', Text, nullable=True),
    Column('feedback', Text, nullable=True),
    Column('rating', Integer, nullable=True),
    Column('call_details', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_learning_sessions_user_created', 'user_id', 'created_at'),
)

user_subscriptions = Table(
    'user_subscriptions',
    metadata,
    Column('id', String(64), primary_key=True),
    Column('user_id', String(64), ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('plan_id', String(64), nullable=False),
    Column('tier', String(20), nullable=False),  # FREE, BASIC, PRO, ENTERPRISE
    Column('status', String(20), nullable=False),  # active, cancelled, past_due, trialing
    Column('current_period_start', DateTime(timezone=True), nullable=False),
    Column('current_period_end', DateTime(timezone=True), nullable=False),
    Column('cancel_at_period_end', Boolean, nullable=False, default=False),
    Column('billing_customer_id', String(255), nullable=True),
    Column('billing_subscription_id', String(255), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_user_subscriptions_user', 'user_id', 'updated_at'),
    # At most one active subscription per user
    Index(
        'uq_user_subscriptions_active',
        'user_id',
        unique=True,
        postgresql_where=text("status = 'active'"),
        sqlite_where=text("status = 'active'"),
    ),
)
