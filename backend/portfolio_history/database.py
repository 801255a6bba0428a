# backend/portfolio_history/database.py
"""
Engine, session factory and health check.

The engine is built once from settings.database_url. Range runs write one
row per day inside a single request, so PostgreSQL gets a small QueuePool
(DB_POOL_* settings) with pre-ping, and SQLite (tests, local runs) shares
one connection when the database lives in memory.
"""

import logging
import time
from collections.abc import Generator

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from .config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine with pooling suited to the URL's backend.

    - sqlite in memory: StaticPool, so every session sees the same database
    - sqlite file: SQLAlchemy defaults, cross-thread use allowed
    - anything else: QueuePool sized from settings
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        in_memory = url.database in (None, "", ":memory:")
        logger.info(f"Using SQLite database ({'in memory' if in_memory else url.database})")
        kwargs = {"poolclass": StaticPool} if in_memory else {}
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=echo,
            **kwargs,
        )

    logger.info(
        f"Using {url.get_backend_name()} pool: size={settings.db_pool_size}, "
        f"overflow={settings.db_pool_max_overflow}, recycle={settings.db_pool_recycle}s"
    )
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_pool_max_overflow,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=settings.db_pool_pre_ping,
        pool_timeout=30,
        echo=echo,
    )


engine = build_engine(settings.database_url, echo=settings.debug)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, closed afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_database_health(bind: Engine | None = None) -> dict:
    """
    Run a trivial query and time it.

    Returns:
        {"status": "healthy", "database": <dialect>, "latency_ms": float}
        or {"status": "unhealthy", "database": <dialect>, "error": str}
    """
    bind = bind or engine
    started = time.perf_counter()
    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "database": bind.dialect.name, "error": str(e)}

    return {
        "status": "healthy",
        "database": bind.dialect.name,
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
    }
