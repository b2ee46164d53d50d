"""Database engine, session factory and FastAPI dependency.

WHAT:
    Builds a sync SQLAlchemy engine + session factory from a URL and exposes
    a FastAPI dependency that hands each request its own session.

WHY:
    - Every handler invocation opens its own session; no state is shared
      between requests beyond the connection pool.
    - The factory is built once in `create_app(settings)` and stored on
      `app.state`, so tests can point it at an in-memory database.

USAGE:
    from adsync.database import get_db

    @router.post("/ga4-sync")
    def ga4_sync(db: Session = Depends(get_db)):
        ...
"""

from contextlib import contextmanager
from typing import Generator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Base is defined in adsync.models to ensure a single registry across the app
from .models import Base  # noqa: F401


def build_engine(database_url: str) -> Engine:
    """Create an engine with pool settings suited to the backend.

    NOTE: SQLite engines (tests/dev) do not support pool_size/max_overflow.
    In-memory SQLite needs a StaticPool so every session sees the same DB.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    if database_url.startswith("postgres://"):
        # Heroku-style URL
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    return create_engine(
        database_url,
        pool_size=10,           # Base pool size
        max_overflow=20,        # Allow up to 30 total connections under load
        pool_recycle=3600,      # Recycle connections every hour
        pool_pre_ping=True,     # Validate connections before use
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def get_db(request: Request) -> Generator[Session, None, None]:
    """Yield a database session from the app's session factory.

    Yields:
        SQLAlchemy Session instance, closed after the response is sent.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Context manager for sessions outside FastAPI (workers, scripts).

    Example:
        with session_scope(factory) as db:
            rows = db.query(Integration).all()
    """
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
