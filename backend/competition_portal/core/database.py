from datetime import datetime, timezone
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from competition_portal.core.config import settings

# SQLite (local runs, tests) needs cross-thread access for the request
# threadpool and the background scheduler
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

# Create database engine - manages connection pool
engine = create_engine(settings.DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)

# autocommit=False: Changes require explicit commit
# autoflush=False: Don't auto-flush before queries
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for all database models
Base = declarative_base()


def utcnow() -> datetime:
    """Timezone-aware current UTC time, used for every timestamp we write."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from backends without tz support (SQLite)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def get_db():
    """
    Dependency for getting database session.

    The session is closed after the request completes, even on error.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        # Prevents connection leaks
        db.close()
