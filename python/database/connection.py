"""
Database Connection Management for the Authentiqa Fraud Review Service

One DatabaseSessionProvider per process owns the engine and session
factory. Request handlers receive a session through the get_db dependency;
services only flush, and the session is committed when the handler returns
without raising.

PostgreSQL in production (psycopg2), SQLite for tests and local runs.
Engine creation is retried with tenacity so the API can start before the
database container is ready.
"""

import os
import logging
from typing import Generator, Optional
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine, text, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import OperationalError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from database.models import Base

logger = logging.getLogger(__name__)


@dataclass
class DatabaseSettings:
    """Connection and pool settings. A full url overrides the parts."""
    host: str = "localhost"
    port: int = 5432
    database: str = "authentiqa"
    user: str = "authentiqa"
    password: str = "authentiqa"
    url: Optional[str] = None
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False

    @classmethod
    def from_env(cls) -> 'DatabaseSettings':
        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "authentiqa"),
            user=os.getenv("DB_USER", "authentiqa"),
            password=os.getenv("DB_PASSWORD", "authentiqa"),
            url=os.getenv("DATABASE_URL") or None,
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            echo=os.getenv("DB_ECHO", "false").lower() == "true"
        )

    @classmethod
    def from_config(cls, db_config) -> 'DatabaseSettings':
        """Build from the config_manager DatabaseConfig section."""
        return cls(
            host=db_config.host,
            port=db_config.port,
            database=db_config.name,
            user=db_config.user,
            password=db_config.password,
            url=db_config.url,
            pool_size=db_config.pool_size,
            max_overflow=db_config.max_overflow,
            pool_timeout=db_config.pool_timeout,
            pool_recycle=db_config.pool_recycle,
            echo=db_config.echo
        )

    def get_url(self) -> str:
        if self.url:
            return self.url
        return f"postgresql+psycopg2://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"

    def is_sqlite(self) -> bool:
        return self.get_url().startswith("sqlite")

    def engine_options(self) -> dict:
        """Keyword arguments for create_engine.

        SQLite connections are shared with FastAPI's threadpool, and its
        default pool takes none of the sizing options. PostgreSQL sessions
        run in UTC so DATE() on timestamptz buckets by UTC day.
        """
        if self.is_sqlite():
            return {"echo": self.echo, "connect_args": {"check_same_thread": False}}
        return {
            "echo": self.echo,
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_recycle": self.pool_recycle,
            "pool_pre_ping": True,
            "connect_args": {"options": "-c timezone=utc"},
        }


# Connection refused / server gone away; anything else fails immediately
connect_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(OperationalError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True
)


class UnitOfWork:
    """
    Explicit transaction boundary for scripts (seeding, maintenance).

    Nothing is committed unless commit() is called; an exception inside the
    block rolls back.

        with provider.get_unit_of_work() as uow:
            TenantRepository(uow.session).insert(Tenant(name="Example University"))
            uow.commit()
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._session: Optional[Session] = None

    def __enter__(self) -> 'UnitOfWork':
        self._session = self._session_factory()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._session is None:
            return
        if exc_type is not None:
            self._session.rollback()
        self._session.close()
        self._session = None

    @property
    def session(self) -> Session:
        if self._session is None:
            raise RuntimeError("UnitOfWork not started. Use as context manager.")
        return self._session

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


class DatabaseSessionProvider:
    """Owns the engine and hands out sessions."""

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None
    ):
        """
        Args:
            settings: Connection settings (environment if not provided)
            engine: Pre-created engine, used as-is (tests)
        """
        self._settings = settings or DatabaseSettings.from_env()
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None

    @property
    def initialized(self) -> bool:
        return self._session_factory is not None

    def init(self, echo: Optional[bool] = None) -> None:
        """Create the engine (unless injected) and the session factory. Idempotent."""
        if self.initialized:
            return
        if echo is not None:
            self._settings.echo = echo
        if self._engine is None:
            self._engine = self._connect()

        # Objects stay readable after commit so handlers can serialize them
        self._session_factory = sessionmaker(bind=self._engine, autoflush=False, expire_on_commit=False)
        logger.info("Database session provider initialized (%s)", self._engine.dialect.name)

    @connect_retry
    def _connect(self) -> Engine:
        engine = create_engine(self._settings.get_url(), **self._settings.engine_options())
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._session_factory

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session that commits on normal exit and rolls back on exception."""
        if not self.initialized:
            self.init()
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_session(self) -> Generator[Session, None, None]:
        """FastAPI dependency form of session_scope."""
        with self.session_scope() as session:
            yield session

    def get_unit_of_work(self) -> UnitOfWork:
        if not self.initialized:
            self.init()
        return UnitOfWork(self._session_factory)

    def create_tables(self) -> None:
        """create_all for local runs; PostgreSQL deployments use Alembic."""
        Base.metadata.create_all(self.engine)
        logger.info("Database tables created")

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._session_factory = None


# ============================================
# PROCESS-WIDE PROVIDER
# ============================================

_db_provider: Optional[DatabaseSessionProvider] = None


def get_db_provider() -> DatabaseSessionProvider:
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider()
    return _db_provider


def set_db_provider(provider: Optional[DatabaseSessionProvider]) -> None:
    """Replace the global provider (application startup and tests)."""
    global _db_provider
    _db_provider = provider


def init_db(settings: Optional[DatabaseSettings] = None, echo: Optional[bool] = None) -> DatabaseSessionProvider:
    """Initialize the global provider. Call during application startup."""
    if settings is not None:
        set_db_provider(DatabaseSessionProvider(settings=settings))
    provider = get_db_provider()
    provider.init(echo=echo)
    return provider


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: request-scoped session from the global provider."""
    yield from get_db_provider().get_session()


def close_db() -> None:
    """Dispose the global provider. Call during application shutdown."""
    global _db_provider
    if _db_provider is not None:
        _db_provider.close()
        _db_provider = None


def create_test_provider(
    engine: Optional[Engine] = None,
    settings: Optional[DatabaseSettings] = None
) -> DatabaseSessionProvider:
    """Provider over an injected engine (in-memory SQLite in tests)."""
    return DatabaseSessionProvider(
        settings=settings or DatabaseSettings(url="sqlite://"),
        engine=engine
    )
