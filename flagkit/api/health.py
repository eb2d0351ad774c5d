"""Health check endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import redis

from flagkit.database import get_db
from flagkit.config import get_settings

router = APIRouter()
settings = get_settings()


@router.get("/health")
@router.head("/health")
def health_check():
    """Basic health check."""
    return {"status": "healthy", "service": "flagkit"}


@router.get("/health/detailed")
def detailed_health_check(db: Session = Depends(get_db)):
    """
    Detailed health check including database and Redis connectivity.

    Redis only backs evaluation stats, so it is reported as "disabled"
    rather than unhealthy when stats are switched off.
    """
    checks = {
        "api": "healthy",
        "database": "unknown",
        "redis": "unknown"
    }

    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except SQLAlchemyError as e:
        checks["database"] = f"unhealthy: {str(e)}"

    if settings.stats_enabled:
        try:
            redis_client = redis.from_url(
                settings.redis_url,
                socket_timeout=settings.redis_timeout_seconds,
                socket_connect_timeout=settings.redis_timeout_seconds
            )
            redis_client.ping()
            checks["redis"] = "healthy"
        except redis.RedisError as e:
            checks["redis"] = f"unhealthy: {str(e)}"
    else:
        checks["redis"] = "disabled"

    overall_status = "healthy" if all(
        v in ("healthy", "disabled") for v in checks.values()
    ) else "degraded"

    return {
        "status": overall_status,
        "checks": checks
    }
