# db.py
# Role: Database bootstrap for the Kwacha Tracker backend.
#       Builds the SQLAlchemy engine and session factory for a given URL and
#       defines the declarative Base. Nothing here is a process-wide global:
#       create_app() builds one engine and hands the session factory down.

"""
Database setup.

- Postgres in production (DATABASE_URL=postgresql://...)
- SQLite for local development and tests (file under database/ or in-memory)
"""

import os

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Declarative base class for ORM models
Base = declarative_base()


def _sqlite_file_path(database_url: str) -> str | None:
    prefix = "sqlite:///"
    if not database_url.startswith(prefix):
        return None
    path = database_url[len(prefix):]
    if path in ("", ":memory:"):
        return None
    return path


def _install_sqlite_pragmas(engine: Engine) -> None:
    """
    pysqlite starts transactions lazily and breaks SAVEPOINT handling, which the
    batch sync relies on. Take over transaction begin ourselves and turn on
    foreign key enforcement for every new connection.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def make_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite needs check_same_thread=False for FastAPI (threaded request handling)
    and the scheduler thread; in-memory SQLite additionally shares one connection
    so every session sees the same database.
    """
    if database_url.startswith("sqlite"):
        file_path = _sqlite_file_path(database_url)
        if file_path:
            # ensure folder exists
            os.makedirs(os.path.dirname(os.path.abspath(file_path)), exist_ok=True)
            engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
            )
        else:
            engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        _install_sqlite_pragmas(engine)
        return engine

    # Connection pool settings for Postgres
    return create_engine(
        database_url,
        pool_size=5,
        max_overflow=20,
        pool_pre_ping=True,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    # Standard session factory used via dependency injection (see app/deps.py:get_db)
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )
