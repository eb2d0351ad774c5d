"""Database connection and session management."""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator
from datetime import datetime, timezone

from flagkit.config import get_settings

settings = get_settings()


def _engine_options(database_url: str) -> dict:
    """Backend specific connection options (timeouts, pooling)."""
    if database_url.startswith("sqlite"):
        options = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": settings.db_statement_timeout_ms / 1000,
            }
        }
        # In-memory databases live inside a single connection
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        return options

    return {
        "pool_pre_ping": True,
        "connect_args": {
            "options": f"-c statement_timeout={settings.db_statement_timeout_ms}"
        },
    }


# Create database engine
engine = create_engine(
    settings.database_url,
    echo=settings.debug,
    **_engine_options(settings.database_url)
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.

    Usage:
        @router.get("/flags")
        def list_flags(db: Session = Depends(get_db)):
            return FlagService(db).list_active(platform, environment)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
