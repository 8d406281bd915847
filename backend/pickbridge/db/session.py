"""
Database session management
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from pickbridge.core.settings import settings
from pickbridge.logging_config import get_logger

logger = get_logger(__name__)

connection_string = settings.database_url

# Log connection info (without password)
if settings.DATABASE_URL:
    logger.info("Database connection: explicit DATABASE_URL")
else:
    logger.info(f"Database connection: {settings.DB_HOST}:{settings.DB_PORT}/{settings.DB_NAME} (PostgreSQL)")

if connection_string.startswith("sqlite"):
    engine = create_engine(
        connection_string,
        echo=False,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        connection_string,
        echo=False,  # Set to True for SQL query logging
        pool_pre_ping=True,  # Verify connections before using
        pool_recycle=3600,  # Recycle connections after 1 hour
    )

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Open a session for one command-line operation.

    Services commit or roll back their own work; this only guarantees the
    session is closed.

    Usage:
        with session_scope() as db:
            service.sync_one(db, "S00042")
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
