"""Database connection and session configuration.

This module sets up the SQLAlchemy engine and the SessionLocal factory based on DATABASE_URL.
It also provides a context manager for database sessions to ensure proper cleanup.
"""

from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from dues_engine.config import get_settings

database_url = get_settings().database_url

connect_args = {}
if database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(database_url, connect_args=connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def make_session_scope(factory):
    """Build a ``get_db_session``-style context manager around a session factory.

    Args:
        factory (sessionmaker): Factory producing Session objects.

    Returns:
        Callable: Context manager yielding a session that commits on success
        and rolls back on error.
    """

    @contextmanager
    def session_scope():
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return session_scope


get_db_session = make_session_scope(SessionLocal)
get_db_session.__doc__ = """Context manager for database sessions.

Ensures that sessions are properly closed and rolled back on exceptions.

Yields:
    Session: SQLAlchemy Session object.
"""
