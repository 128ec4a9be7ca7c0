"""
Database access for the channel points ledger.

Provides:
- create_db_engine(): engine factory (PostgreSQL in production, SQLite locally)
- create_session_factory()
- unit_of_work(): one atomic scope: commit on success, rollback on error
- create_schema()

Every ledger operation receives the Session opened by ``unit_of_work`` as an
explicit argument; nothing in the package holds a module-level session.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .tables import Base

logger = logging.getLogger(__name__)


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _install_sqlite_locking(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first write, so a read followed by a
    # conditional UPDATE is not isolated. Take the write lock up front instead;
    # concurrent units then queue on the busy timeout.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(url: str, *, echo: bool = False, busy_timeout: float = 30.0) -> Engine:
    if not _is_sqlite(url):
        return create_engine(url, echo=echo, pool_pre_ping=True)

    kwargs = {
        "echo": echo,
        "connect_args": {"check_same_thread": False, "timeout": busy_timeout},
    }
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)
    _install_sqlite_locking(engine)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=True)


@contextmanager
def unit_of_work(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """
    Open a session whose work commits or rolls back as a whole.

    Yields:
        Session: the handle that must be passed to every store call made
        inside the unit.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)
    logger.info("Database schema ensured on %s", engine.url.render_as_string(hide_password=True))


__all__ = [
    "create_db_engine",
    "create_session_factory",
    "unit_of_work",
    "create_schema",
]
