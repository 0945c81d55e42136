"""Database configuration and session management for the helpdesk API.

Exports:
- Base: declarative base for models
- engine: SQLAlchemy engine
- SessionLocal: session factory
- get_db: FastAPI dependency that yields a DB session
- init_db(): helper to create tables (calls Base.metadata.create_all)

Behavior:
- Reads DATABASE_URL from env, falls back to a local SQLite file `helpdesk.db` in the project root.
- Uses connect_args for SQLite to allow multi-threaded access in dev.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _default_sqlite_url() -> str:
    db_path = PROJECT_ROOT / "helpdesk.db"
    return f"sqlite:///{db_path.as_posix()}"


DATABASE_URL: str = os.getenv("DATABASE_URL", _default_sqlite_url())

# SQLite requires `check_same_thread=False` when sessions cross threads (uvicorn, tests)
if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
else:
    engine = create_engine(DATABASE_URL, pool_pre_ping=True)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, class_=Session)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Yield a SQLAlchemy DB session for FastAPI dependencies.

    Usage:
        def endpoint(db: Session = Depends(get_db)):
            ...
    """
    db: Optional[Session] = None
    try:
        db = SessionLocal()
        yield db
    finally:
        if db is not None:
            db.close()


def init_db() -> None:
    """Create all tables for the registered models.

    Imports `helpdesk.models` so model classes are registered with `Base`
    before calling `Base.metadata.create_all()`.
    """
    try:
        import helpdesk.models  # noqa: F401

        logger.info("Creating database tables (if not exists)")
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized")
    except Exception as exc:
        logger.exception("Failed to initialize database: %s", exc)
        raise


__all__ = ["Base", "engine", "SessionLocal", "get_db", "init_db"]
