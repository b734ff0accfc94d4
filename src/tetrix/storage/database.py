from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator
from contextlib import contextmanager
import logging
import os
import threading

from pydantic_settings import BaseSettings
from .base import StorageAdapter
from .models import Base

logger = logging.getLogger(__name__)

class DatabaseConfig(BaseSettings):
    """Configuration for SQL Storage."""
    DATABASE_URL: str = "sqlite:///data/tetrix.db"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    @property
    def is_memory(self) -> bool:
        return self.is_sqlite and (":memory:" in self.DATABASE_URL or self.DATABASE_URL == "sqlite://")

class DatabaseAdapter(StorageAdapter):
    """
    SQLAlchemy-based adapter (Postgres in production, SQLite locally).

    ``scope()`` binds one session per thread so that the ledger and the
    task store share a unit of work inside a ledger transaction.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._engine = None
        self._session_factory = None
        self._local = threading.local()

    def connect(self) -> None:
        if self._engine:
            return

        try:
            logger.info(f"Connecting to database at {self.config.DATABASE_URL.split('@')[-1]}")

            if self.config.is_memory:
                self._engine = create_engine(
                    self.config.DATABASE_URL,
                    echo=self.config.DATABASE_ECHO,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
            elif self.config.is_sqlite:
                path = self.config.DATABASE_URL.split("///", 1)[-1]
                if os.path.dirname(path):
                    os.makedirs(os.path.dirname(path), exist_ok=True)
                self._engine = create_engine(
                    self.config.DATABASE_URL,
                    echo=self.config.DATABASE_ECHO,
                    connect_args={"check_same_thread": False},
                )
            else:
                self._engine = create_engine(
                    self.config.DATABASE_URL,
                    echo=self.config.DATABASE_ECHO,
                    pool_size=self.config.DATABASE_POOL_SIZE,
                    max_overflow=self.config.DATABASE_MAX_OVERFLOW,
                    pool_pre_ping=True
                )

            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
            logger.info("Database connection pool established.")

        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            raise

    def create_schema(self) -> None:
        """Create missing tables (local dev and tests)."""
        if not self._engine:
            raise ConnectionError("Database is not connected. Call connect() first.")
        Base.metadata.create_all(self._engine)

    def close(self) -> None:
        if self._engine:
            self._engine.dispose()
            self._engine = None
            logger.info("Database connection pool closed.")

    def health_check(self) -> bool:
        if not self._engine:
            return False
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.exception("database unhealthy")
            return False

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.
        """
        if not self._session_factory:
            raise ConnectionError("Database is not connected. Call connect() first.")

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def scope(self) -> Generator[Session, None, None]:
        """
        Reuse this thread's open session if any; otherwise open a
        transactional one that commits when the outermost scope exits.
        """
        current = getattr(self._local, "session", None)
        if current is not None:
            yield current
            return

        with self.get_session() as session:
            self._local.session = session
            try:
                yield session
            finally:
                self._local.session = None
