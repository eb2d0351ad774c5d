"""Feature flag endpoints.

Admin routes (create, edit, list, delete) need an API key. Evaluation is
public so SDKs can call it directly; its stats are recorded after the
response is sent.

Routes are plain functions: the session is blocking, so FastAPI runs them
in its threadpool instead of on the event loop.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from flagkit.api.evaluation import user_context
from flagkit.config import get_settings
from flagkit.database import get_db
from flagkit.middleware.auth import require_api_key
from flagkit.middleware.logging import get_logger
from flagkit.models.api_key import ApiKey
from flagkit.schemas.evaluation import FlagDecision, Page
from flagkit.schemas.flag import Flag, FlagCreate, FlagToggle, FlagUpdate, RolloutUpdate
from flagkit.schemas.targeting import UserContext
from flagkit.services.evaluation import EvaluationService
from flagkit.services.flags import FlagService
from flagkit.services.stats import StatsRecorder, get_stats_recorder, record_events

router = APIRouter(prefix="/platforms/{platform}/environments/{environment}/flags")
settings = get_settings()
logger = get_logger()


@router.post("", response_model=Flag, status_code=201)
def create_flag(
    platform: str,
    environment: str,
    request: FlagCreate,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    """Create version 1 of a flag. 409 if the key already has an active version."""
    flag = FlagService(db).create(platform, environment, request)

    logger.info(
        "flag_created",
        platform=platform,
        environment=environment,
        flag_key=flag.flag_key,
        api_key=api_key.name
    )
    return flag


@router.get("", response_model=Page[Flag])
def list_flags(
    platform: str,
    environment: str,
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    cursor: Optional[str] = None,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    """Active flags ordered by key, one page at a time."""
    return FlagService(db).list_active(platform, environment, limit=limit, cursor=cursor)


@router.get("/{flag_key}", response_model=Flag)
def get_flag(
    platform: str,
    environment: str,
    flag_key: str,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    return FlagService(db).get_active(platform, environment, flag_key)


@router.get("/{flag_key}/versions", response_model=List[Flag])
def list_flag_versions(
    platform: str,
    environment: str,
    flag_key: str,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    """Full history of a flag, newest first."""
    return FlagService(db).list_versions(platform, environment, flag_key)


@router.get("/{flag_key}/versions/{version}", response_model=Flag)
def get_flag_version(
    platform: str,
    environment: str,
    flag_key: str,
    version: int,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    return FlagService(db).get_version(platform, environment, flag_key, version)


@router.put("/{flag_key}", response_model=Flag)
def update_flag(
    platform: str,
    environment: str,
    flag_key: str,
    request: FlagUpdate,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    """
    Edit a flag.

    Creates a new active version and retires the previous one. A payload
    that only touches `enabled` or the rollout is applied in place. Pass
    `expected_version` or `expected_revision` to fail with 409 instead of
    overwriting a concurrent edit.
    """
    flag = FlagService(db).update(platform, environment, flag_key, request)

    logger.info(
        "flag_updated",
        platform=platform,
        environment=environment,
        flag_key=flag_key,
        version=flag.version,
        revision=flag.revision,
        api_key=api_key.name
    )
    return flag


@router.patch("/{flag_key}/toggle", response_model=Flag)
def toggle_flag(
    platform: str,
    environment: str,
    flag_key: str,
    request: FlagToggle,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    """Kill switch. Changes the active version in place."""
    flag = FlagService(db).toggle(
        platform,
        environment,
        flag_key,
        request.enabled,
        expected_version=request.expected_version,
        expected_revision=request.expected_revision
    )

    logger.info(
        "flag_toggled",
        platform=platform,
        environment=environment,
        flag_key=flag_key,
        enabled=flag.enabled,
        api_key=api_key.name
    )
    return flag


@router.patch("/{flag_key}/rollout", response_model=Flag)
def update_flag_rollout(
    platform: str,
    environment: str,
    flag_key: str,
    request: RolloutUpdate,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    """Change the percentage rollout in place."""
    flag = FlagService(db).update_rollout(platform, environment, flag_key, request)

    logger.info(
        "flag_rollout_updated",
        platform=platform,
        environment=environment,
        flag_key=flag_key,
        rollout_enabled=flag.rollout_enabled,
        percentage_a=flag.rollout_percentage_a,
        percentage_b=flag.rollout_percentage_b,
        api_key=api_key.name
    )
    return flag


@router.delete("/{flag_key}")
def delete_flag(
    platform: str,
    environment: str,
    flag_key: str,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    """Delete every version of a flag."""
    deleted = FlagService(db).delete(platform, environment, flag_key)

    logger.info(
        "flag_deleted",
        platform=platform,
        environment=environment,
        flag_key=flag_key,
        versions=deleted,
        api_key=api_key.name
    )
    return {"flag_key": flag_key, "deleted_versions": deleted}


@router.get("/{flag_key}/stats")
def get_flag_stats(
    platform: str,
    environment: str,
    flag_key: str,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db),
    stats: Optional[StatsRecorder] = Depends(get_stats_recorder)
):
    """Evaluation counters: total, per served value and per country."""
    FlagService(db).get_active(platform, environment, flag_key)
    if stats is None:
        return {"flag_key": flag_key, "stats_enabled": False, "counts": {}}
    return {
        "flag_key": flag_key,
        "stats_enabled": True,
        "counts": stats.get_flag_counts(platform, environment, flag_key)
    }


@router.get("/{flag_key}/evaluate", response_model=FlagDecision)
def evaluate_flag(
    platform: str,
    environment: str,
    flag_key: str,
    background_tasks: BackgroundTasks,
    context: UserContext = Depends(user_context),
    db: Session = Depends(get_db),
    stats: Optional[StatsRecorder] = Depends(get_stats_recorder)
):
    """
    Decide which value a user receives.

    Same user, same flag version, same answer. 404 if the flag does not exist.
    """
    decision, events = EvaluationService(db).evaluate_flag(platform, environment, flag_key, context)
    background_tasks.add_task(record_events, stats, events)

    logger.debug(
        "flag_evaluated",
        platform=platform,
        environment=environment,
        flag_key=flag_key,
        served_value=decision.served_value,
        source=decision.source
    )
    return decision
