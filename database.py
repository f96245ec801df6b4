"""
Database access: engine ownership, session management and transactions.
"""
import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from models import Base

logger = logging.getLogger(__name__)


class Database:
    """
    Owns the connection pool and session factory for one application.

    The instance lives on ``app.state.database``; handlers receive sessions
    through the ``get_db`` dependency.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = make_url(url)
        engine_kwargs = {"echo": echo, "pool_pre_ping": True}

        if self.url.get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if self.url.database in (None, "", ":memory:"):
                # One shared connection, otherwise every checkout sees an empty database
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(url, **engine_kwargs)

        if self.url.get_backend_name() == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database schema initialized (%s)", self.url.render_as_string(hide_password=True))

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def session(self) -> Session:
        return self.SessionLocal()

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Database connection pool closed")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_db(request: Request) -> Iterator[Session]:
    """
    Dependency function that yields a database session.
    Use this in FastAPI route dependencies.
    """
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Group several writes into one unit.

    Commits when the block finishes; on any exception the session is rolled
    back and the exception propagates.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
