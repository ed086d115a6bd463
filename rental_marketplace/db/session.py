from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from rental_marketplace.db.base import Base

READ_ONLY_OPTION = "rental_read_only"


def build_engine(database_url: str, **kwargs) -> Engine:
    if database_url.startswith("sqlite"):
        connect_args = dict(kwargs.pop("connect_args", {}))
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        engine = create_engine(database_url, connect_args=connect_args, future=True, **kwargs)
        _serialize_sqlite_writers(engine)
        return engine

    return create_engine(
        database_url,
        pool_pre_ping=True,
        future=True,
        **kwargs,
    )


def _serialize_sqlite_writers(engine: Engine) -> None:
    # SQLite ignores FOR UPDATE; BEGIN IMMEDIATE takes the write lock up front
    # so two reservation transactions cannot interleave their check and insert.
    # Read-only sessions use a deferred BEGIN and, with WAL, never block writers.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(READ_ONLY_OPTION):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def build_read_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Sessions for lookups that must not take the writer lock (availability, reminder sweep)."""
    return build_session_factory(engine.execution_options(**{READ_ONLY_OPTION: True}))


def init_db(engine: Engine) -> None:
    # Registers every mapped table on Base.metadata before create_all.
    from rental_marketplace.models import rental_models  # noqa: F401

    Base.metadata.create_all(engine)
