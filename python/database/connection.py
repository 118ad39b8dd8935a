"""
Database connection handling for duplicate detection.

Builds the engine from DatabaseSettings (config.yaml or DB_* environment
variables), retries the first connection with tenacity and hands out
sessions through DatabaseSessionProvider.session_scope, which commits on
success and rolls back on any exception. The duplicate service runs each
check inside exactly one such scope.
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
    """Where the partner tables live and how the pool is sized."""
    host: str = "localhost"
    port: int = 5432
    database: str = "mdm_database"
    user: str = "mdm_user"
    password: str = "mdm_password"
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False
    url: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'DatabaseSettings':
        """Read DB_* variables; DATABASE_URL overrides the parts."""
        env = os.getenv
        return cls(
            host=env("DB_HOST", cls.host),
            port=int(env("DB_PORT", str(cls.port))),
            database=env("DB_NAME", cls.database),
            user=env("DB_USER", cls.user),
            password=env("DB_PASSWORD", cls.password),
            pool_size=int(env("DB_POOL_SIZE", str(cls.pool_size))),
            max_overflow=int(env("DB_MAX_OVERFLOW", str(cls.max_overflow))),
            pool_timeout=int(env("DB_POOL_TIMEOUT", str(cls.pool_timeout))),
            pool_recycle=int(env("DB_POOL_RECYCLE", str(cls.pool_recycle))),
            echo=env("DB_ECHO", "false").lower() == "true",
            url=env("DATABASE_URL")
        )

    @classmethod
    def from_config(cls, db_config) -> 'DatabaseSettings':
        """Build settings from the database section of config.yaml.

        DATABASE_URL still takes precedence when set.
        """
        return cls(
            host=db_config.host,
            port=db_config.port,
            database=db_config.name,
            user=db_config.user,
            password=db_config.password,
            url=os.getenv("DATABASE_URL")
        )

    def get_url(self) -> str:
        if self.url:
            return self.url
        return f"postgresql+psycopg2://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"

    def get_pool_settings(self) -> dict:
        """Keyword arguments for create_engine on pooled backends."""
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_recycle": self.pool_recycle,
            "pool_pre_ping": True,
        }


# ============================================
# RETRY
# ============================================

def create_retry_decorator(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10
) -> Callable:
    """Retry on OperationalError with exponential backoff, then re-raise."""
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(OperationalError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


db_retry = create_retry_decorator()


# ============================================
# SESSION PROVIDER
# ============================================

class DatabaseSessionProvider:
    """
    Owns the engine and session factory for the duplicate service.

    Usage:
        provider = DatabaseSessionProvider(DatabaseSettings.from_env())
        provider.init()
        with provider.session_scope() as session:
            store = SqlRecordStore(session)
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None
    ):
        """
        Args:
            settings: Connection settings, read from the environment if omitted
            engine: Ready-made engine, used by tests to inject SQLite
        """
        self._settings = settings or DatabaseSettings.from_env()
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None
        self._initialized = False

    def init(self, echo: Optional[bool] = None) -> None:
        """Create the engine if needed and bind the session factory. Idempotent."""
        if self._initialized:
            return

        if echo is not None:
            self._settings.echo = echo

        if self._engine is None:
            self._engine = self._create_engine_with_retry()

        # expire_on_commit off: detector dataclasses are built after commit
        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False
        )

        @event.listens_for(self._engine, "connect")
        def on_connect(dbapi_connection, connection_record):
            logger.debug("New database connection established")

        self._initialized = True
        logger.info("Database session provider initialized")

    @db_retry
    def _create_engine_with_retry(self) -> Engine:
        url = self._settings.get_url()

        if url.startswith("sqlite"):
            engine = create_engine(url, echo=self._settings.echo)
        else:
            engine = create_engine(
                url,
                echo=self._settings.echo,
                poolclass=QueuePool,
                **self._settings.get_pool_settings()
            )

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        return engine

    @property
    def is_initialized(self) -> bool:
        return self._initialized

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
        """
        One transaction: commit on normal exit, roll back on any exception.

        The exception is re-raised after rollback so callers can map it.
        """
        if self._session_factory is None:
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

    def create_tables(self) -> None:
        if self._engine is None:
            self.init()
        Base.metadata.create_all(self._engine)
        logger.info("Partner duplicate tables created")

    def drop_tables(self) -> None:
        """Drop every table. Tests only."""
        if self._engine is None:
            self.init()
        Base.metadata.drop_all(self._engine)
        logger.warning("Partner duplicate tables dropped")

    def health_check(self) -> bool:
        try:
            with self.session_scope() as session:
                session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._initialized = False


# ============================================
# APPLICATION PROVIDER
# ============================================

_db_provider: Optional[DatabaseSessionProvider] = None


def init_db(settings: Optional[DatabaseSettings] = None, echo: bool = False) -> DatabaseSessionProvider:
    """Create and initialize the provider used by the API. Called at startup."""
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider(settings=settings)
    _db_provider.init(echo=echo)
    return _db_provider


def close_db() -> None:
    """Dispose of the API's provider. Called at shutdown."""
    global _db_provider
    if _db_provider:
        _db_provider.close()
        _db_provider = None


def create_test_provider(
    engine: Optional[Engine] = None,
    settings: Optional[DatabaseSettings] = None
) -> DatabaseSessionProvider:
    """Provider over an injected engine, not yet initialized."""
    return DatabaseSessionProvider(
        settings=settings or DatabaseSettings(),
        engine=engine
    )
