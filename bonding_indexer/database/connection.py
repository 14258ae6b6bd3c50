# bonding_indexer/database/connection.py

from typing import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine, Engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .base import Base
from ..core.logging import IndexerLogger, log_with_context, INFO, DEBUG, ERROR
from ..types import DatabaseConfig


class DatabaseManager:
    def __init__(self, config: DatabaseConfig):
        if not config:
            raise ValueError("DatabaseConfig is required")

        self.config = config
        self.logger = IndexerLogger.get_logger(f'database.{self.__class__.__name__.lower()}')
        self._engine = None
        self._session_factory = None

        log_with_context(self.logger, INFO, "DatabaseManager initialized",
                         db_url_host=self._extract_host_from_url(config.url))

    @staticmethod
    def _extract_host_from_url(url: str) -> str:
        if url.startswith('sqlite'):
            return 'sqlite'
        if '@' in url:
            return url.split('@', 1)[1].split('/', 1)[0]
        return "unknown"

    @property
    def is_sqlite(self) -> bool:
        return self.config.url.startswith('sqlite')

    def initialize(self) -> None:
        if self._engine is not None:
            self.logger.warning("Database already initialized")
            return

        try:
            self.logger.info("Initializing database engine")

            if self.is_sqlite:
                kwargs = {'connect_args': {'check_same_thread': False}}
                if self.config.url in ('sqlite://', 'sqlite:///:memory:'):
                    # one shared connection, or every session sees an empty database
                    kwargs['poolclass'] = StaticPool
            else:
                kwargs = {
                    'pool_size': self.config.pool_size,
                    'max_overflow': self.config.max_overflow,
                    'pool_timeout': 30,
                    'pool_recycle': 3600,
                }

            self._engine = create_engine(self.config.url, echo=self.config.echo, **kwargs)
            self._session_factory = sessionmaker(
                bind=self._engine,
                expire_on_commit=False,
            )

            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))

            log_with_context(self.logger, INFO, "Database initialized successfully",
                             pool_size=self.config.pool_size,
                             max_overflow=self.config.max_overflow)

        except SQLAlchemyError as e:
            log_with_context(self.logger, ERROR, "Failed to initialize database",
                             error=str(e),
                             exception_type=type(e).__name__)
            raise

    def create_tables(self) -> None:
        # registers the table classes on Base.metadata
        from . import tables  # noqa: F401

        Base.metadata.create_all(self.engine)
        log_with_context(self.logger, INFO, "Database tables ensured",
                         tables=len(Base.metadata.tables))

    def shutdown(self) -> None:
        self.logger.info("Shutting down database connections")
        if self._engine:
            self._engine.dispose()
            self._engine = None
        self._session_factory = None
        self.logger.info("Database shutdown completed")

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._engine

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")

        session = self._session_factory()
        try:
            log_with_context(self.logger, DEBUG, "Database session created")
            yield session
        except Exception as e:
            log_with_context(self.logger, ERROR, "Database session error, rolling back",
                             error=str(e),
                             exception_type=type(e).__name__)
            session.rollback()
            raise
        finally:
            session.close()
            log_with_context(self.logger, DEBUG, "Database session closed")

    @contextmanager
    def get_transaction(self) -> Generator[Session, None, None]:
        with self.get_session() as session:
            try:
                yield session
                session.commit()
                log_with_context(self.logger, DEBUG, "Database transaction committed")
            except Exception as e:
                session.rollback()
                log_with_context(self.logger, ERROR, "Database transaction rolled back",
                                 error=str(e),
                                 exception_type=type(e).__name__)
                raise

    def health_check(self) -> bool:
        try:
            with self.get_session() as session:
                session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            log_with_context(self.logger, ERROR, "Database health check failed",
                             error=str(e),
                             exception_type=type(e).__name__)
            return False
