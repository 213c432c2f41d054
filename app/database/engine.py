from __future__ import annotations

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from app.config import settings
from app.database.models import Base


log = logging.getLogger(__name__)

# Bound by init_engine(); importing modules may hold a reference before that.
SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False)

_engine: Engine | None = None


def _install_sqlite_locking(engine: Engine) -> None:
    """Make every SQLite transaction take the write lock up front.

    pysqlite defers BEGIN until the first DML statement, so two sweeps could both
    read a trade as pending before either writes. BEGIN IMMEDIATE serializes
    writers from the first statement, which is what SELECT ... FOR UPDATE gives
    us on PostgreSQL.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _record) -> None:
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(url: str | None = None, echo: bool | None = None) -> Engine:
    url = url or settings.DATABASE_URL
    echo = settings.DB_ECHO if echo is None else echo

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=echo,
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        _install_sqlite_locking(engine)
        return engine

    return create_engine(url, echo=echo, future=True, pool_pre_ping=True)


def init_engine(url: str | None = None) -> Engine:
    global _engine
    _engine = create_db_engine(url)
    SessionLocal.configure(bind=_engine)
    log.info("database engine ready dialect=%s", _engine.dialect.name)
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("init_engine() has not been called")
    return _engine


def init_schema(engine: Engine | None = None) -> None:
    """Create missing tables. Existing tables are left untouched."""
    Base.metadata.create_all(engine or get_engine())
