"""
Module: clinical_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  This is the single point of database
    connection configuration for the clinical kernel.
Architecture position: Kernel > DB.  May import from db/base.py.
    MUST NOT import from services/ or outer layers (except for
    create_tables/drop_tables, which import models so metadata is complete).

Invariants enforced:
    - PostgreSQL is the production backend (READ COMMITTED, pooled).
    - Step history and audit rows are append-only from the moment the
      engine is initialized (ORM listeners are registered here).
    - SQLite is accepted for tests and local tooling.  The pysqlite driver's
      implicit transaction handling is replaced by explicit BEGIN so that
      SAVEPOINT-based test isolation behaves as on PostgreSQL.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory called before
      init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from clinical_kernel.db.immutability import register_immutability_listeners
from clinical_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _install_sqlite_transaction_fix(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_autobegin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """Create an engine for ``database_url`` without touching module state."""
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **kwargs)
        _install_sqlite_transaction_fix(engine)
        return engine

    return create_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(database_url: str, echo: bool = False, **pool_kwargs) -> Engine:
    """
    Initialize the module-level engine and session factory.

    Postconditions: All subsequent get_engine/get_session calls use this
        engine.  A second call replaces the first.

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine, _SessionFactory

    _engine = build_engine(database_url, echo=echo, **pool_kwargs)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    register_immutability_listeners()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )

    return _engine


def get_engine() -> Engine:
    """
    Get the current engine instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    """
    Get a new session instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory for creating sessions.

    Audit sinks use this to write in their own session after the primary
    transaction has committed.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed.  The exception
        is re-raised to the caller.

    Usage:
        with session_scope() as session:
            session.add(entity)
    """
    session = get_session()
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


def create_tables(engine: Engine | None = None) -> None:
    """Create all kernel tables on ``engine`` (default: the module engine)."""
    from clinical_kernel.db.base import Base
    import clinical_kernel.models  # noqa: F401  (registers tables on Base.metadata)

    Base.metadata.create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from clinical_kernel.db.base import Base
    import clinical_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """Reset the engine and session factory.  Useful for test cleanup."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose():
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)
