"""
Database session management.
"""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from rabtrack.core.config import settings
from rabtrack.db.base import Base

logger = logging.getLogger(__name__)


def make_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite connections wait on the database lock instead of failing."""
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"timeout": settings.SQLITE_BUSY_TIMEOUT, "check_same_thread": False},
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_recycle=3600
    )


engine = make_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Iterator[Session]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Run a block as one unit of work.

    Commits when the block finishes; any exception rolls back every write
    staged in the block and is re-raised unchanged.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        logger.debug("Unit of work rolled back")
        raise


def init_db(bind: Engine = None):
    """Initialize database tables."""
    import rabtrack.models  # noqa: F401  registers every table on Base.metadata
    Base.metadata.create_all(bind=bind or engine)
