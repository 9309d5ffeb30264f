"""
Database handle shared by the message stores.

The handle is built once at startup and passed into the store constructor;
nothing in the package reaches the engine through a module global.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()


class Database:
    """
    Wraps a SQLAlchemy engine and its session factory.

    The engine pools connections internally and is safe to share across
    request threads; sessions are not, so every operation opens its own.
    """

    def __init__(self, url: str, echo: bool = False):
        connect_args = {}
        if url.startswith("sqlite"):
            # Sessions are opened from FastAPI's threadpool
            connect_args["check_same_thread"] = False
        self.url = url
        self.engine = create_engine(url, connect_args=connect_args, echo=echo)
        self.SessionLocal = sessionmaker(autoflush=False, bind=self.engine)

    def init_schema(self) -> None:
        """Create all ORM tables. Called during application startup."""
        logger.debug(f"Initializing database with URL: {self.url}")
        try:
            # Import models to register them with Base.metadata
            from geonotes.models import Message  # noqa: F401

            Base.metadata.create_all(bind=self.engine)
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def has_table(self, name: str) -> bool:
        return inspect(self.engine).has_table(name)

    def check_health(self) -> bool:
        """
        Check if the database is reachable and the messages table exists.

        Returns:
            True if DB is healthy and schema exists, False otherwise.
        """
        logger.debug("Checking database health...")
        try:
            with self.session() as db:
                db.execute(text("SELECT 1"))
            if not self.has_table("messages"):
                logger.error("Database schema not applied: 'messages' table not found")
                return False
            logger.debug("Database health check passed")
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def dispose(self) -> None:
        self.engine.dispose()
