"""
Engine and session management for Kurator.

PostgreSQL (psycopg2) in production, SQLite for tests and local runs. The
engine is created once at startup, retried with tenacity while the database
comes up, and handed to FastAPI through the ``get_db`` dependency.

Sessions never commit on their own: services flush, routers commit, and
whatever is left uncommitted when the request ends is rolled back on close.
"""

import os
import logging
from typing import Generator, Optional, Callable
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine, event, text, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from database.models import Base

logger = logging.getLogger(__name__)


# ============================================
# SETTINGS
# ============================================

@dataclass
class DatabaseSettings:
    """Where Kurator's database lives and how its pool is sized."""
    host: str = "localhost"
    port: int = 5432
    database: str = "kurator"
    user: str = "kurator"
    password: str = "kurator"
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False
    url: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'DatabaseSettings':
        """DB_* variables, with DATABASE_URL taking over the whole URL when set."""
        env = os.environ
        return cls(
            host=env.get("DB_HOST", cls.host),
            port=int(env.get("DB_PORT", cls.port)),
            database=env.get("DB_NAME", cls.database),
            user=env.get("DB_USER", cls.user),
            password=env.get("DB_PASSWORD", cls.password),
            pool_size=int(env.get("DB_POOL_SIZE", cls.pool_size)),
            max_overflow=int(env.get("DB_MAX_OVERFLOW", cls.max_overflow)),
            pool_timeout=int(env.get("DB_POOL_TIMEOUT", cls.pool_timeout)),
            pool_recycle=int(env.get("DB_POOL_RECYCLE", cls.pool_recycle)),
            echo=env.get("DB_ECHO", "false").lower() == "true",
            url=env.get("DATABASE_URL") or None,
        )

    def get_url(self) -> str:
        if self.url:
            return self.url
        return f"postgresql+psycopg2://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"

    @property
    def is_sqlite(self) -> bool:
        return self.get_url().startswith("sqlite")


def get_pool_settings(settings: DatabaseSettings) -> dict:
    """Engine keyword arguments: a pre-pinged QueuePool for PostgreSQL, thread sharing for SQLite."""
    if settings.is_sqlite:
        return {"connect_args": {"check_same_thread": False}}
    return {
        "poolclass": QueuePool,
        "pool_size": settings.pool_size,
        "max_overflow": settings.max_overflow,
        "pool_timeout": settings.pool_timeout,
        "pool_recycle": settings.pool_recycle,
        "pool_pre_ping": True,
    }


def create_retry_decorator(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10
) -> Callable:
    """
    Retry on OperationalError (refused or dropped connections) with exponential backoff.

    The last error is re-raised once attempts run out.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(OperationalError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


connect_retry = create_retry_decorator(max_attempts=5)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ============================================
# SESSION PROVIDER
# ============================================

class DatabaseSessionProvider:
    """
    Owns the engine and session factory.

    ``engine`` may be passed in ready-made (tests use a StaticPool SQLite
    engine); otherwise ``init()`` builds one from the settings.
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None
    ):
        self._settings = settings or DatabaseSettings.from_env()
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None

    @property
    def initialized(self) -> bool:
        return self._session_factory is not None

    def init(self, echo: Optional[bool] = None) -> None:
        if self.initialized:
            return
        if echo is not None:
            self._settings.echo = echo
        if self._engine is None:
            self._engine = self._connect()
        elif self._engine.dialect.name == "sqlite":
            event.listen(self._engine, "connect", _enable_sqlite_foreign_keys)

        self._session_factory = sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False
        )
        logger.info(f"Database ready ({self._engine.dialect.name})")

    @connect_retry
    def _connect(self) -> Engine:
        engine = create_engine(
            self._settings.get_url(),
            echo=self._settings.echo,
            **get_pool_settings(self._settings)
        )
        if self._settings.is_sqlite:
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database engine not created; call init() first")
        return self._engine

    def _factory(self) -> sessionmaker:
        if not self.initialized:
            self.init()
        return self._session_factory

    def get_session(self) -> Generator[Session, None, None]:
        """Request-scoped session. Uncommitted work is discarded on close."""
        session = self._factory()()
        try:
            yield session
        finally:
            session.close()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Commit when the block exits cleanly, roll back when it raises."""
        session = self._factory()()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create missing tables. Existing tables are left untouched."""
        self._factory()
        Base.metadata.create_all(self.engine)
        logger.info("Database schema checked")

    def health_check(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, RuntimeError) as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._session_factory = None


# ============================================
# APPLICATION-WIDE PROVIDER
# ============================================

_db_provider: Optional[DatabaseSessionProvider] = None


def get_db_provider() -> DatabaseSessionProvider:
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider()
    return _db_provider


def init_db(
    echo: bool = False,
    settings: Optional[DatabaseSettings] = None
) -> DatabaseSessionProvider:
    """
    Start the application-wide provider (called from the startup hook).

    ``settings`` only applies when no provider exists yet.
    """
    global _db_provider
    if _db_provider is None and settings is not None:
        _db_provider = DatabaseSessionProvider(settings=settings)
    provider = get_db_provider()
    provider.init(echo=echo)
    return provider


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: ``db: Session = Depends(get_db)``."""
    yield from get_db_provider().get_session()


def close_db() -> None:
    global _db_provider
    if _db_provider is not None:
        _db_provider.close()
        _db_provider = None
