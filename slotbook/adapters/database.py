"""
SQLAlchemy engine and session setup.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .orm import Base

DEFAULT_BUSY_TIMEOUT_SECONDS = 15


def create_db_engine(
    database_url: str,
    busy_timeout_seconds: float = DEFAULT_BUSY_TIMEOUT_SECONDS,
    echo: bool = False,
) -> Engine:
    """
    Create the engine for ``database_url``.

    SQLite connections start every transaction with ``BEGIN IMMEDIATE`` so
    that a conflict re-check and the following insert run under the write
    lock; competing writers wait up to ``busy_timeout_seconds``.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, echo=echo)

    # check_same_thread=False: sessions are used from worker threads
    engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": busy_timeout_seconds},
    )
    _configure_sqlite(engine)
    return engine


def _configure_sqlite(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _):
        # Hand transaction control to SQLAlchemy; pysqlite would emit a deferred BEGIN
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes that do not exist yet."""
    Base.metadata.create_all(engine)
