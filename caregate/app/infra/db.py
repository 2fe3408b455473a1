"""Database session utilities."""
from contextlib import contextmanager
import time
from typing import Iterator, Optional

import structlog
from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel, Session

from ..domain import models  # noqa: F401  registers tables on SQLModel.metadata
from ..domain.errors import AccessControlError
from .config import get_settings

logger = structlog.get_logger(__name__)

settings = get_settings()
connect_args = {"check_same_thread": False} if settings.is_sqlite else {}
engine = create_engine(settings.database_url, echo=False, future=True, connect_args=connect_args)
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    class_=Session,
)


def init_db(bind_engine: Optional[Engine] = None) -> None:
    """Create tables if they do not exist.

    Retries on startup to wait for the database service in Docker.
    """
    target_engine = bind_engine or engine
    attempts = 0
    last_err: Exception | None = None
    while attempts < settings.db_connect_attempts:
        try:
            SQLModel.metadata.create_all(target_engine)
            return
        except OperationalError as exc:  # pragma: no cover
            last_err = exc
            attempts += 1
            logger.warning(
                "database not ready",
                attempt=attempts,
                max_attempts=settings.db_connect_attempts,
                error=str(exc),
            )
            time.sleep(1)
    if last_err:
        raise last_err


@contextmanager
def get_session() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except AccessControlError:
        # A denial still keeps the history, request and audit rows written before it.
        session.commit()
        raise
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def upsert_insert(session: Session, model):
    """Dialect-specific INSERT supporting ON CONFLICT clauses.

    Grant, history and pending-request writes race on unique keys; these
    statements let the database settle the race atomically.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Unsupported database dialect for upserts: {dialect}")
