"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file `studytogether.db` next to
the package by default) and provides small helpers used by the
application, scripts and tests.
"""

from sqlmodel import SQLModel, create_engine, Session

from .config import settings

DB_URL = settings.DATABASE_URL
_connect_args = {"check_same_thread": False} if DB_URL.startswith("sqlite") else {}
engine = create_engine(DB_URL, echo=False, connect_args=_connect_args)


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    This function is intended for local development and lightweight
    scripts; production deployments should rely on a proper migration
    tool (alembic) instead.
    """
    # models must be imported so their tables are registered on the metadata
    from . import models  # noqa: F401
    SQLModel.metadata.create_all(engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
