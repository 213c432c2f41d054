from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session, sessionmaker

from app.database.engine import SessionLocal


log = logging.getLogger(__name__)


@contextmanager
def session_scope(factory: sessionmaker | None = None) -> Iterator[Session]:
    """One unit of work: commit when the block exits cleanly, otherwise roll back and re-raise.

    `factory` defaults to the process-wide `SessionLocal`; the settlement engine
    and the tests hand in their own to bind another database.
    """
    with (factory or SessionLocal)() as session:
        try:
            yield session
        except Exception as e:
            session.rollback()
            log.debug("transaction rolled back: %s", type(e).__name__)
            raise
        session.commit()


def get_session() -> Iterator[Session]:
    """Request-scoped session for `Depends`; read-only routes never commit."""
    with SessionLocal() as session:
        yield session
