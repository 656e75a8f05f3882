"""SQLAlchemy engine factory and session helpers for the ingest store.

This module provides:

* ``create_ingest_engine``    -- Engine with a per-operation deadline baked in.
* ``IngestSession``           -- ``Session`` with ``expire_on_commit=False``.
* ``ingest_session_factory``  -- ``sessionmaker`` producing ``IngestSession``.
* ``create_schema``           -- Create the five ingest tables if missing.
* ``check_connectivity``      -- ``SELECT 1`` round trip for health checks.

Every database call must finish within the configured deadline (30 s by
default). SQLite gets it through the driver's busy ``timeout``; PostgreSQL
through a server-side ``statement_timeout``; everything gets it as the pool
checkout timeout.

Tags:
    pnp-ingest, orm, sqlalchemy, session, engine
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pnp_ingest.core.logging import get_logger

logger = get_logger(__name__)

_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def create_ingest_engine(
    url: str = "sqlite:///pnp_ingest.db",
    *,
    timeout_seconds: float = 30.0,
    pool_size: int | None = None,
    echo: bool = False,
    **kwargs: Any,
) -> Engine:
    """Create a SQLAlchemy engine for the ingest store.

    Parameters
    ----------
    url:
        Database URL (``sqlite:///…``, ``postgresql+psycopg://…``, etc.)
    timeout_seconds:
        Deadline applied to connection checkout and statement execution.
    pool_size:
        Connection pool size (ignored for SQLite).
    """
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": timeout_seconds}
        connect_args.update(kwargs.pop("connect_args", {}))
        if url in _MEMORY_URLS:
            # One shared connection, or every checkout sees an empty database
            kwargs.setdefault("poolclass", StaticPool)
        engine = _sa_create_engine(url, echo=echo, connect_args=connect_args, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    pool_kwargs: dict[str, Any] = {"pool_timeout": timeout_seconds, "pool_pre_ping": True}
    if pool_size is not None:
        pool_kwargs["pool_size"] = pool_size

    if url.startswith("postgresql"):
        connect_args = {"options": f"-c statement_timeout={int(timeout_seconds * 1000)}"}
        connect_args.update(kwargs.pop("connect_args", {}))
        kwargs["connect_args"] = connect_args

    return _sa_create_engine(url, echo=echo, **pool_kwargs, **kwargs)


class IngestSession(Session):
    """Pre-configured session with ``expire_on_commit=False``.

    Rows read inside a transaction are converted to records after commit;
    expiring them would trigger lazy reloads on a closed session.
    """

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def ingest_session_factory(engine: Engine) -> sessionmaker[IngestSession]:
    """Return a ``sessionmaker`` bound to *engine* that produces ``IngestSession`` instances."""
    return sessionmaker(bind=engine, class_=IngestSession)


def create_schema(engine: Engine) -> None:
    """Create the ingest tables (no-op for tables that already exist)."""
    from pnp_ingest.storage.tables import IngestBase

    IngestBase.metadata.create_all(engine)
    logger.info("storage.schema_created", tables=sorted(IngestBase.metadata.tables))


def check_connectivity(engine: Engine) -> bool:
    """Return True if the database answers ``SELECT 1``."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as exc:
        logger.warning("storage.unreachable", error=str(exc))
        return False
