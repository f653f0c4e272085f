"""Database connection factory for the trade ledger (SQLite or PostgreSQL)."""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool

from ledger_db.settings import DatabaseSettings
from ledger_db.models import Base
from ledger_db.utils import redact_db_url

logger = logging.getLogger(__name__)


class DatabaseFactory:
    """Owns the engine and session factory for one ledger database.

    Usage:
        db = DatabaseFactory(DatabaseSettings(db_name=":memory:"))
        db.create_tables()

        with db.get_session() as session:
            inserted = AggregatedTradeRepository(session).bulk_insert(records)
            # Commits on success, rolls back on exception
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        self.settings = settings or DatabaseSettings()
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def engine(self) -> Engine:
        """Lazy-load SQLAlchemy engine."""
        if self._engine is None:
            url = self.settings.get_database_url()
            logger.info(f"Connecting to ledger database {redact_db_url(url)}")
            if url.startswith("sqlite"):
                self._engine = self._sqlite_engine(url)
            else:
                self._engine = self._pooled_engine(url)
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        """Lazy-load session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                autocommit=False,
                autoflush=False,
                bind=self.engine,
            )
        return self._session_factory

    def _sqlite_engine(self, url: str) -> Engine:
        kwargs = {
            "echo": self.settings.echo_sql,
            "connect_args": {"check_same_thread": False},
        }
        # In-memory databases must share one connection across threads
        if ":memory:" in url:
            kwargs["poolclass"] = StaticPool

        engine = create_engine(url, **kwargs)

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    def _pooled_engine(self, url: str) -> Engine:
        return create_engine(
            url,
            echo=self.settings.echo_sql,
            poolclass=QueuePool,
            pool_size=self.settings.pool_size,
            max_overflow=self.settings.max_overflow,
            pool_timeout=self.settings.pool_timeout,
            pool_recycle=self.settings.pool_recycle,
        )

    def create_tables(self) -> None:
        """Create all ledger tables that do not exist yet."""
        Base.metadata.create_all(bind=self.engine)

    def drop_tables(self) -> None:
        """Drop all ledger tables. Use with caution."""
        Base.metadata.drop_all(bind=self.engine)

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Transactional session scope.

        Commits when the block exits normally, rolls back and re-raises on
        any exception, and always closes the session.
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
