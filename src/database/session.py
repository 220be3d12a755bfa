"""
Database Session Management

Handles connection pooling, session lifecycle, and database initialization.
Designed for both PostgreSQL (production) and SQLite (local development, tests).

Every invariant of the queue is enforced inside one transaction. Two
timeouts bound how long a caller can be held up:
- DB_POOL_TIMEOUT: waiting for a connection slot / a row lock
- DB_TRANSACTION_TIMEOUT: the whole statement or idle transaction
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool

from src.utils.config import get_settings
from .models import Base

logger = logging.getLogger(__name__)

# =============================================================================
# DATABASE URL CONFIGURATION
# =============================================================================

def get_database_url() -> str:
    """
    Get database URL from settings.

    Priority:
    1. DATABASE_URL
    2. SQLite fallback for local development
    """
    settings = get_settings()
    url = settings.DATABASE_URL

    if url:
        # Hosted PostgreSQL URLs often use postgres:// but SQLAlchemy needs postgresql://
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        logger.info("Using database from DATABASE_URL")
        return url

    logger.warning(f"No DATABASE_URL found, using SQLite: {settings.SQLITE_PATH}")
    return f"sqlite:///{settings.SQLITE_PATH}"


def _is_postgres(url: str) -> bool:
    return url.startswith("postgresql")


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


# =============================================================================
# ENGINE CONFIGURATION
# =============================================================================

def create_db_engine(url: Optional[str] = None) -> Engine:
    """
    Create database engine with appropriate settings.

    PostgreSQL: Connection pooling, server-side statement/lock timeouts
    SQLite: Busy timeout, foreign key support
    """
    settings = get_settings()
    url = url or get_database_url()
    echo = settings.SQL_DEBUG

    if _is_postgres(url):
        transaction_ms = settings.DB_TRANSACTION_TIMEOUT * 1000
        lock_ms = settings.DB_POOL_TIMEOUT * 1000
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,   # Wait for connection slot
            pool_recycle=1800,                        # Recycle connections after 30 min
            pool_pre_ping=True,                       # Verify connections before use
            connect_args={
                "options": (
                    f"-c statement_timeout={transaction_ms} "
                    f"-c lock_timeout={lock_ms} "
                    f"-c idle_in_transaction_session_timeout={transaction_ms}"
                ),
            },
            echo=echo,
        )
        logger.info("Created PostgreSQL engine with connection pooling")
    else:
        connect_args = {
            "check_same_thread": False,           # Allow multi-thread access
            "timeout": settings.DB_POOL_TIMEOUT,  # Busy wait on a locked database
        }
        if _is_memory_sqlite(url):
            # One shared connection, otherwise every session sees an empty database
            engine = create_engine(url, connect_args=connect_args, poolclass=StaticPool, echo=echo)
        else:
            engine = create_engine(url, connect_args=connect_args, echo=echo)

        # Enable foreign keys for SQLite; transactions are begun by the listener below
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            dbapi_conn.isolation_level = None
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        # Take the write lock up front so concurrent writers queue on the busy timeout
        @event.listens_for(engine, "begin")
        def begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        logger.info("Created SQLite engine")

    return engine


# Global engine (lazy initialization)
_engine = None


def get_engine() -> Engine:
    """Get or create the application database engine."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


# =============================================================================
# SESSION MANAGEMENT
# =============================================================================

# Session factory (lazy initialization)
_SessionLocal = None


def create_session_factory(engine: Engine) -> sessionmaker:
    """Build a session factory bound to an engine."""
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,  # Don't expire objects after commit
    )


def get_session_factory() -> sessionmaker:
    """Get or create the application session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = create_session_factory(get_engine())
    return _SessionLocal


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    One transaction on a session from the given factory.

    Commits when the block exits normally, rolls back and re-raises
    on any exception.

    Usage:
        with session_scope(factory) as db:
            db.add(item)
    """
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# =============================================================================
# DATABASE INITIALIZATION
# =============================================================================

def init_db(engine: Optional[Engine] = None, drop_all: bool = False) -> None:
    """
    Initialize database - create all tables.

    Args:
        engine: Engine to initialize (defaults to the application engine)
        drop_all: If True, drop all tables first (USE WITH CAUTION!)
    """
    engine = engine or get_engine()

    if drop_all:
        logger.warning("Dropping all database tables!")
        Base.metadata.drop_all(bind=engine)

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")


def get_db_info() -> dict:
    """
    Get database information for diagnostics.
    """
    url = get_database_url()

    # Mask password in URL for logging
    safe_url = url
    if "@" in url:
        parts = url.split("@")
        safe_url = parts[0].rsplit(":", 1)[0] + ":***@" + parts[1]

    info = {
        "database_type": "postgresql" if _is_postgres(url) else "sqlite",
        "connection_url": safe_url,
        "connected": False,
    }

    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
            info["connected"] = True
    except Exception as e:
        info["error"] = str(e)

    return info


def check_db_connection() -> bool:
    """
    Check if database connection is working.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection verified")
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
