"""
Database Configuration and Session Management
=============================================

Provides the explicitly constructed storage handle used by every service.
There is no module-level engine: the application creates one `Database`,
calls `init()` at startup and `shutdown()` when it stops, and passes the
handle to the services that need it.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from models import Base
from utils.exception_handler import CivicIssueError

logger = logging.getLogger(__name__)


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or ":memory:" in url


class Database:
    """Storage handle with an explicit init/shutdown lifecycle"""

    def __init__(self, url: str, echo: bool = False):
        if not url:
            raise ValueError("Database URL is required")
        self.url = url
        self.echo = echo
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database is not initialized - call init() first")
        return self._engine

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    def init(self, create_schema: bool = True) -> "Database":
        """Create the engine and session factory, optionally creating tables"""
        if self._engine is not None:
            return self

        if _is_sqlite(self.url):
            kwargs = {"connect_args": {"check_same_thread": False}}
            if _is_memory_sqlite(self.url):
                # One shared connection, otherwise every session sees an empty database
                kwargs["poolclass"] = StaticPool
            engine = create_engine(self.url, echo=self.echo, **kwargs)

            @event.listens_for(engine, "connect")
            def _enable_foreign_keys(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()
        else:
            engine = create_engine(
                self.url,
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,    # Validate connections before use
                pool_recycle=3600,
                pool_timeout=30,
                echo=self.echo,
            )

        self._engine = engine
        self._session_factory = sessionmaker(
            bind=engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

        if create_schema:
            self.create_tables()

        logger.info(f"✅ DATABASE_READY: {self.url.split('@')[-1]}")
        return self

    def create_tables(self) -> None:
        """Create all tables if they don't exist"""
        logger.info("🏗️ Creating database tables (if they don't exist)...")
        Base.metadata.create_all(bind=self.engine, checkfirst=True)
        logger.info(f"📋 Tables: {', '.join(sorted(Base.metadata.tables))}")

    def shutdown(self) -> None:
        """Dispose of the connection pool; the handle can be re-initialized"""
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("🔌 DATABASE_SHUTDOWN: connection pool disposed")

    def get_session(self) -> Session:
        """Get a new database session"""
        if self._session_factory is None:
            raise RuntimeError("Database is not initialized - call init() first")
        return self._session_factory()

    @contextmanager
    def managed_session(self) -> Iterator[Session]:
        """
        Transactional scope: commits on success, rolls back on any error.

        IntegrityError (the duplicate signal from a uniqueness constraint) and
        domain errors are re-raised without an error log.
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except (IntegrityError, CivicIssueError):
            session.rollback()
            raise
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    def test_connection(self) -> bool:
        """Test database connection"""
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            logger.info("✅ Database connection test successful")
            return True
        except Exception as e:
            logger.error(f"❌ Database connection test failed: {e}")
            return False
