import logging
from contextlib import contextmanager
from functools import wraps
from typing import Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from app.core import config
from app.core.errors import AlignError, StoreError
from app.db.base import Base

logger = logging.getLogger(__name__)


class Database:
    """
    Owns the engine and session factory for one process.
    Built once in create_app() and handed to every service; tests build their own.
    """

    def __init__(self, url: str = config.DATABASE_URL, **engine_kwargs):
        self.url = url
        self.engine_kwargs = engine_kwargs
        self.engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    def open(self) -> "Database":
        if self.engine is not None:
            return self
        self.engine = create_engine(self.url, **self._engine_options())
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        logger.info("Database engine created for %s", self.engine.url.render_as_string(hide_password=True))
        return self

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            logger.info("Database connection pool closed")
        self.engine = None
        self._session_factory = None

    def create_all(self) -> None:
        import app.models  # noqa: F401 - register models with Base

        self.open()
        Base.metadata.create_all(bind=self.engine)

    def _engine_options(self) -> dict:
        if self.url.startswith("sqlite"):
            # In-memory SQLite must share one connection across threads
            options = {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
        else:
            options = {
                "poolclass": QueuePool,
                "pool_size": config.DB_POOL_SIZE,
                "max_overflow": config.DB_MAX_OVERFLOW,
                "pool_timeout": config.DB_POOL_TIMEOUT,  # seconds to wait for a free connection
                "pool_pre_ping": True,
                "pool_recycle": 3600,
                "connect_args": {
                    "connect_timeout": 10,
                    "options": f"-c statement_timeout={config.DB_STATEMENT_TIMEOUT_MS}",
                },
                "echo": False,
            }
        options.update(self.engine_kwargs)
        return options

    def new_session(self) -> Session:
        if self._session_factory is None:
            self.open()
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """One unit of work: commit on success, roll back on any error."""
        db = self.new_session()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def translate_store_errors(action: str):
    """Re-raise raw SQLAlchemy failures as StoreError; typed errors pass through."""

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except AlignError:
                raise
            except SQLAlchemyError as e:
                logger.exception("%s: %s", action, e)
                raise StoreError(action) from e

        return wrapper

    return decorator


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_db(request: Request):
    db = get_database(request).new_session()
    try:
        yield db
    finally:
        db.close()
