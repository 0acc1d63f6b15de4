"""Database engine and session lifecycle.

``Database`` is a process-scoped service: ``main`` builds one at startup,
passes it to the ledger, and disposes it on exit. Sessions are short-lived
and never shared between operations.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from config import DATABASE_ECHO, DATABASE_URL
from models import Base

logger = logging.getLogger(__name__)


class Database:
    """Owns the SQLAlchemy engine and hands out sessions.

    Args:
        url: SQLAlchemy URL; defaults to ``config.DATABASE_URL``.
        echo: Log every SQL statement.
    """

    def __init__(self, url: str = DATABASE_URL, echo: bool = DATABASE_ECHO) -> None:
        self.url = url
        self.echo = echo
        self.engine: Optional[Engine] = None
        self._sessions: Optional[sessionmaker[Session]] = None

    @property
    def dialect(self) -> str:
        """Dialect name of the engine (``"postgresql"``, ``"sqlite"``)."""
        if self.engine is None:
            raise RuntimeError("Database.initialize() has not been called")
        return self.engine.dialect.name

    def initialize(self) -> None:
        """Create the engine, the session factory and any missing tables."""
        self.engine = create_engine(self.url, echo=self.echo, pool_pre_ping=True)
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)
        logger.info("Database ready (%s)", self.engine.url.render_as_string(hide_password=True))

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Read-only session; rolled back on error and always closed."""
        if self._sessions is None:
            raise RuntimeError("Database.initialize() has not been called")
        session = self._sessions()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session whose work is committed together on success.

        Exceptions must propagate out of the block for the rollback to
        happen.
        """
        if self._sessions is None:
            raise RuntimeError("Database.initialize() has not been called")
        session = self._sessions()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Dispose of the engine's connection pool."""
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
            self._sessions = None
            logger.info("Database connection closed")
