"""Setup endpoint for database initialization."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from flagkit.config import get_settings
from flagkit.database import Base, engine, get_db
from flagkit.middleware.logging import get_logger
from flagkit.seed import is_seeded, seed_database

router = APIRouter()
settings = get_settings()
logger = get_logger()


@router.post("/setup/init-db")
def initialize_database(db: Session = Depends(get_db)):
    """
    Initialize database tables and create initial data.

    This endpoint should only be called once after deployment.
    Creates tables, the admin API key from settings, a demo flag and a
    demo experiment. Does nothing if an API key already exists.
    """
    Base.metadata.create_all(bind=engine)

    if is_seeded(db):
        return {
            "status": "already_initialized",
            "message": "Database already has data. Skipping initialization."
        }

    summary = seed_database(db, settings.admin_api_key)
    logger.info("database_seeded", **summary)

    return {
        "status": "success",
        "message": "Database initialized successfully",
        **summary,
        "note": "Use the configured ADMIN_API_KEY in the x-api-key header."
    }
