"""
Module: settlement_kernel.db.engine
Responsibility: SQLAlchemy engine construction, schema creation
    and transactional scope utilities.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/, selectors/, domain/, or outer layers (except
    create_tables, which imports models to populate the metadata).

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED with explicit row locks
      (SELECT ... FOR UPDATE) on the agreement row for every mutation.
    - SQLite (tests, single-node installs) gets the pysqlite transaction
      fix so SAVEPOINT works and foreign keys are enforced.
    - session_scope() commits on success and rolls back on any exception.
    - No module-level engine: callers own the engine and session factory.
"""

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from settlement_kernel.logging_config import get_logger

logger = get_logger("db.engine")


def _install_sqlite_transaction_fix(engine: Engine) -> None:
    """Let SQLAlchemy own BEGIN on pysqlite so savepoints behave."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str, echo: bool = False, **pool_options: Any) -> Engine:
    """
    Create an engine for any SQLAlchemy URL without touching module state.

    In-memory SQLite uses a StaticPool so every session sees the same
    database; PostgreSQL gets READ COMMITTED with pre-ping.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, echo=echo, **kwargs)
        _install_sqlite_transaction_fix(engine)
    else:
        pool_options.setdefault("pool_pre_ping", True)
        engine = create_engine(
            database_url,
            echo=echo,
            isolation_level="READ COMMITTED",
            **pool_options,
        )
    return engine


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session],
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    On normal exit the session is committed and closed.  On exception it is
    rolled back and closed, and the exception is re-raised.
    """
    session = session_factory()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """
    Create all tables and register the immutability listeners.

    All ORM models are imported here so Base.metadata knows every table.
    """
    from settlement_kernel.db.base import Base
    from settlement_kernel.db.immutability import register_immutability_listeners
    import settlement_kernel.models  # noqa: F401

    Base.metadata.create_all(engine)
    register_immutability_listeners()
    logger.info(
        "tables_created",
        extra={"tables": sorted(Base.metadata.tables)},
    )


def drop_tables(engine: Engine) -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from settlement_kernel.db.base import Base

    Base.metadata.drop_all(engine)

