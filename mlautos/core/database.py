"""
Module for working with the database.

This module provides functions and utilities for initializing, connecting
and interacting with the database that backs the collections key-value store.
PostgreSQL is used in deployment; any SQLAlchemy URL (e.g. SQLite) can be set
through DATABASE_URL.

Attributes:
    logger: Logger for registering database-related events.
    engine: SQLAlchemy Engine instance for database connection.
    SessionLocal: SQLAlchemy session factory for creating Session objects.

Functions:
    create_db_engine: Builds an engine with pool settings suited to the URL.
    init_db: Initializes the database, creating all necessary tables.
    get_db: Context manager for working with database session.
    check_connection: Checks database connection.
"""

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, text  # type: ignore
from sqlalchemy.engine import Engine  # type: ignore
from sqlalchemy.exc import SQLAlchemyError  # type: ignore
from sqlalchemy.orm import Session, sessionmaker  # type: ignore

from mlautos.config.settings import DATABASE_URL
from mlautos.core.models import Base
from mlautos.utils.logger import get_logger

logger = get_logger(__name__)


def create_db_engine(url: str = DATABASE_URL) -> Engine:
    """
    Create a database engine.

    Connection pool sizing applies to server databases only; SQLite URLs get
    the driver defaults.

    Args:
        url (str): SQLAlchemy database URL.

    Returns:
        Engine: Configured engine.
    """
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_size=5,  # Maximum number of connections in pool
        max_overflow=10,  # Maximum number of connections that can be created above pool_size
        pool_timeout=30,  # Wait time for available connection in seconds
        pool_recycle=1800,  # Reconnect after 30 minutes to prevent connection drops
    )


engine = create_db_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Optional[Engine] = None) -> None:
    """
    Database initialization.

    Creates all tables defined in models if they don't exist.

    Args:
        bind (Optional[Engine]): Engine to initialize, the module engine by default.

    Raises:
        SQLAlchemyError: If an error occurred while creating tables.
    """
    try:
        Base.metadata.create_all(bind=bind or engine)
        logger.info("Database successfully initialized")
    except SQLAlchemyError:
        logger.error("Error initializing database", exc_info=True)
        raise


@contextmanager
def get_db(session_factory: sessionmaker = SessionLocal) -> Generator[Session, None, None]:
    """
    Context manager for working with database session.

    Commits on successful exit, rolls back on error and always closes the
    session.

    Args:
        session_factory (sessionmaker): Factory of the target database.

    Yields:
        Session: SQLAlchemy database session for performing operations.

    Raises:
        SQLAlchemyError: When errors occur in database operations.

    Examples:
        >>> with get_db() as db:
        ...     db.add(Collection(key="toyota-corolla", value="{}"))
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error("Error working with database", exc_info=True)
        raise
    finally:
        db.close()


def check_connection() -> bool:
    """
    Database connection check.

    Returns:
        bool: True if connection is successfully established, False otherwise.
    """
    try:
        with get_db() as db:
            db.execute(text("SELECT 1"))
            logger.info("Database connection successful")
            return True
    except SQLAlchemyError:
        logger.error("Database connection error", exc_info=True)
        return False
