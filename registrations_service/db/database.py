"""
Database connection and session management for Registrations Service.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool
from contextlib import contextmanager
from typing import Generator
import logging

from registrations_service.core.config import config
from registrations_service.models.base import Base
from registrations_service.models import event as _event_models  # noqa: F401
from registrations_service.models import team as _team_models  # noqa: F401
from registrations_service.models import registration as _registration_models  # noqa: F401

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Database manager for the registration store.
    Handles connection pooling and transaction management.
    """

    def __init__(self):
        self.engine = None
        self.session_factory = None
        self._initialized = False

    async def initialize(self):
        """Initialize database connections."""
        if self._initialized:
            return

        try:
            db_url = await config.get_database_url()
            db_config = await config.get_database_config()

            self.engine = create_engine(
                db_url,
                poolclass=QueuePool,
                pool_size=db_config["pool_size"],
                max_overflow=db_config["max_overflow"],
                pool_timeout=db_config["pool_timeout"],
                pool_recycle=db_config["pool_recycle"],
                echo=False,
                future=True
            )

            self.session_factory = sessionmaker(
                bind=self.engine,
                class_=Session,
                autoflush=False,
                expire_on_commit=False
            )

            self._setup_event_listeners(db_config["statement_timeout_seconds"])

            self._initialized = True
            logger.info("Database manager initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize database manager: {e}")
            raise

    def _setup_event_listeners(self, statement_timeout_seconds: int):
        """Bound every statement and lock wait so no call hangs indefinitely."""

        @event.listens_for(self.engine, "connect")
        def set_connection_timeouts(dbapi_connection, connection_record):
            with dbapi_connection.cursor() as cursor:
                cursor.execute("SET default_transaction_isolation TO 'read committed'")
                cursor.execute(f"SET lock_timeout TO '{statement_timeout_seconds // 2}s'")
                cursor.execute(f"SET statement_timeout TO '{statement_timeout_seconds}s'")

        @event.listens_for(self.engine, "checkout")
        def receive_checkout(dbapi_connection, connection_record, connection_proxy):
            logger.debug("Database connection checked out")

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Get a database session with automatic transaction management.
        Ensures proper rollback on exceptions.
        """
        if not self._initialized:
            raise RuntimeError("Database manager not initialized")

        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    @contextmanager
    def get_transaction_session(self) -> Generator[Session, None, None]:
        """
        Get a database session with explicit transaction control.
        The caller commits; any exception rolls the whole unit back.
        """
        if not self._initialized:
            raise RuntimeError("Database manager not initialized")

        session = self.session_factory()
        try:
            session.begin()
            yield session
        except Exception as e:
            session.rollback()
            logger.warning(f"Transaction rolled back: {e}")
            raise
        finally:
            session.close()

    async def create_tables(self):
        """Create all database tables."""
        if not self._initialized:
            await self.initialize()

        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables created successfully")

    async def drop_tables(self):
        """Drop all database tables (use with caution)."""
        if not self._initialized:
            await self.initialize()

        Base.metadata.drop_all(bind=self.engine)
        logger.info("Database tables dropped successfully")

    async def close(self):
        """Close all database connections."""
        if self.engine:
            self.engine.dispose()
        logger.info("Database connections closed")


# Global database manager instance
db_manager = DatabaseManager()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency for getting database session."""
    with db_manager.get_session() as session:
        yield session
