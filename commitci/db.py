"""SQLAlchemy plumbing for the SQL result store.

Only the ``sqlite`` store backend and the ORM model import this module;
the default file store never touches a database.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

# Seconds a SQLite connection waits on a locked database before failing
SQLITE_BUSY_TIMEOUT = 30


class Base(DeclarativeBase):
    """Declarative base for commitci tables."""


def get_engine(db_url: str) -> Engine:
    """Create an engine for a result database.

    Build workers share one engine, so SQLite connections are allowed to
    cross threads and wait for concurrent writers. The directory of a
    file-backed SQLite database is created if missing.

    Args:
        db_url: SQLAlchemy database URL.

    Returns:
        SQLAlchemy Engine instance.
    """
    url = make_url(db_url)
    connect_args: dict[str, Any] = {}
    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = SQLITE_BUSY_TIMEOUT
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(url, connect_args=connect_args)


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory whose objects stay usable after commit."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def get_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """Open a session that commits on success and rolls back on error.

    Args:
        session_factory: Factory to open the session from.

    Yields:
        SQLAlchemy Session instance.
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


def open_database(db_url: str) -> sessionmaker[Session]:
    """Prepare a result database and return a session factory for it.

    Creates the ``build_results`` table if it does not exist yet.

    Args:
        db_url: SQLAlchemy database URL.

    Returns:
        Session factory bound to the database.
    """
    # Importing the model registers its table on Base.metadata
    from commitci.builds import models  # noqa: F401

    engine = get_engine(db_url)
    Base.metadata.create_all(bind=engine)
    return get_session_factory(engine)


__all__ = [
    "Base",
    "get_engine",
    "get_session",
    "get_session_factory",
    "open_database",
]
