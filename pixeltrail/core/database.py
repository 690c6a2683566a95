"""
Database configuration and session management.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from pixeltrail.core.config import settings

_database_url = str(getattr(settings, "DATABASE_URL", ""))

_engine_kwargs = {"pool_pre_ping": True}  # Verify connections before use
if _database_url.startswith("sqlite"):
    # SQLite connections are handed across FastAPI's threadpool.
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    # Reduce worst-case startup/readiness delays when the DB host is unreachable.
    # (psycopg2 honors connect_timeout in seconds)
    if _database_url.startswith(("postgresql://", "postgres://")):
        _engine_kwargs["connect_args"] = {"connect_timeout": 5}
    _engine_kwargs.update(pool_size=10, max_overflow=20, pool_timeout=30)

engine = create_engine(_database_url, **_engine_kwargs)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db():
    """Dependency for getting database sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
