"""
Database initialization and connection management utilities.

This module provides the StateDatabase class which owns the SQLAlchemy engine
and session factory used by the import ledger and checkpoint store.
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Engine, create_engine, pool
from sqlalchemy.orm import Session, sessionmaker

from forum_migration.client.exceptions import ConfigurationError, StateError
from forum_migration.migration.models import Base
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine with appropriate settings.

    Args:
        database_url: Database connection URL (sqlite:/// or postgresql://)
        echo: Whether to log SQL statements (useful for debugging)

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ConfigurationError: If database URL is invalid
    """
    if not database_url:
        raise ConfigurationError("Database URL cannot be empty")

    try:
        is_sqlite = database_url.startswith("sqlite")

        if is_sqlite:
            in_memory = database_url in ("sqlite://", "sqlite:///:memory:")
            if not in_memory:
                db_file = database_url.removeprefix("sqlite:///")
                Path(db_file).parent.mkdir(parents=True, exist_ok=True)

            # An in-memory database lives only as long as its single connection
            engine = create_engine(
                database_url,
                echo=echo,
                poolclass=pool.StaticPool if in_memory else pool.NullPool,
                connect_args={"check_same_thread": False},
            )
        else:
            engine = create_engine(database_url, echo=echo, pool_pre_ping=True)

        logger.debug(
            "database_engine_created",
            database_type="sqlite" if is_sqlite else engine.dialect.name,
        )
        return engine

    except Exception as e:
        logger.error("database_engine_failed", error=str(e), database_url=database_url)
        raise ConfigurationError(f"Failed to create database engine: {e}") from e


class StateDatabase:
    """
    Owns the engine and session factory of one state database.

    Each run builds its own instance, so several runs can coexist in one
    process (tests use in-memory SQLite).

    Usage:
        db = StateDatabase("sqlite:///migration_state.db")
        with db.session() as session:
            session.add(obj)
    """

    def __init__(self, database_url: str, echo: bool = False):
        """
        Initialize the database and create missing tables.

        Args:
            database_url: Database connection URL
            echo: Whether to log SQL statements

        Raises:
            ConfigurationError: If database initialization fails
        """
        self.database_url = database_url
        self.engine = create_database_engine(database_url, echo=echo)

        try:
            Base.metadata.create_all(self.engine)
        except Exception as e:
            logger.error("database_init_failed", error=str(e), database_url=database_url)
            raise ConfigurationError(f"Failed to initialize database: {e}") from e

        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

        logger.debug(
            "database_initialized",
            database_url=database_url,
            tables=len(Base.metadata.tables),
        )

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions.

        Automatically commits on success and rolls back on exception.
        Always closes the session when done.

        Yields:
            SQLAlchemy Session instance

        Raises:
            StateError: If database operation fails
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except StateError:
            session.rollback()
            raise
        except Exception as e:
            session.rollback()
            logger.error("database_session_rolled_back", error=str(e))
            raise StateError(f"Database operation failed: {e}") from e
        finally:
            session.close()

    def reset(self) -> None:
        """Drop all tables and recreate them."""
        try:
            Base.metadata.drop_all(self.engine)
            Base.metadata.create_all(self.engine)
            logger.warning("database_reset", database_url=self.database_url)
        except Exception as e:
            raise StateError(f"Failed to reset database: {e}") from e

    def dispose(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()
