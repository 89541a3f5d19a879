"""Engine and session management."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from painflow.config import Settings
from painflow.db.models import Base

logger = logging.getLogger(__name__)

SessionFactory = sessionmaker[Session]


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(settings: Settings) -> Engine:
    """Create an engine for `settings.database_url`."""

    sqlite_path = settings.sqlite_path()
    if sqlite_path is not None:
        sqlite_path.parent.mkdir(parents=True, exist_ok=True)

    connect_args: dict = {}
    is_sqlite = settings.database_url.startswith("sqlite")
    if is_sqlite:
        # Background analysis runs use their own sessions on worker threads.
        connect_args["check_same_thread"] = False

    engine = create_engine(
        settings.database_url,
        echo=settings.database_echo,
        connect_args=connect_args,
    )
    if is_sqlite:
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def create_session_factory(settings: Settings) -> SessionFactory:
    """Build a session factory bound to a fresh engine."""

    engine = create_db_engine(settings)
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_database(session_factory: SessionFactory) -> None:
    """Create all tables that do not exist yet."""

    engine = session_factory.kw["bind"]
    Base.metadata.create_all(engine)
    logger.info("Database schema initialized at %s", engine.url.render_as_string())


@contextmanager
def session_scope(session_factory: SessionFactory) -> Iterator[Session]:
    """Provide a transactional scope: commit on success, roll back on any error."""

    session = session_factory()
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()
