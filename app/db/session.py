"""
Database session management utilities.

``get_db`` is the request-scoped FastAPI dependency. ``session_scope`` is for
work that runs outside a request (webhook background tasks, renewal workers,
scripts), where each unit of work needs its own session.
"""

import contextlib
from typing import Callable, Generator, Iterator

from sqlalchemy.orm import Session

# Re-export SessionLocal from base
from app.db.base import SessionLocal, Base, engine


def get_db() -> Generator:
    """
    Get a database session.

    Yields:
        SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextlib.contextmanager
def session_scope(session_factory: Callable[[], Session] = None) -> Iterator[Session]:
    """
    Open a session for a background unit of work and always close it.

    Args:
        session_factory: Optional factory override (tests pass their own)
    """
    db = (session_factory or SessionLocal)()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
