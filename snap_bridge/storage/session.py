"""
============================================================================
SNAP Bank Bridge v1.0.0
Database Session - SQLAlchemy Engine & Session Factory
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Side Effects: Database connections

The relational store is shared with the rest of the payment platform; the
engine pool is owned here, never a process-wide lock.

============================================================================
"""

import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from snap_bridge.errors import PersistenceTransientError

logger = logging.getLogger(__name__)


# ============================================================================
# ENGINE
# ============================================================================

def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a pooled engine.

    SQLite URLs skip the pool sizing arguments they do not accept.
    """
    if database_url.startswith("sqlite"):
        return create_engine(database_url, echo=echo, future=True)

    return create_engine(
        database_url,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
        echo=echo,
        future=True,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


# ============================================================================
# HEALTH CHECK
# ============================================================================

def check_database_connection(engine: Engine) -> bool:
    """
    Verify database connectivity.

    Raises:
        PersistenceTransientError: If the database is unreachable
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"[SNAP-DB-001] Database health check failed | error={type(e).__name__}")
        raise PersistenceTransientError("Database connection failed") from e
