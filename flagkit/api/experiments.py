"""Experiment endpoints: definition, lifecycle and assignment."""
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from flagkit.api.evaluation import user_context
from flagkit.config import get_settings
from flagkit.database import get_db
from flagkit.middleware.auth import require_api_key
from flagkit.middleware.logging import get_logger
from flagkit.models.api_key import ApiKey
from flagkit.schemas.evaluation import ExperimentDecision, Page
from flagkit.schemas.experiment import (
    Experiment,
    ExperimentCreate,
    ExperimentStatus,
    ExperimentTransition,
    ExperimentUpdate,
    StatusAction,
    TrafficAllocationUpdate,
)
from flagkit.schemas.targeting import UserContext
from flagkit.services.evaluation import EvaluationService
from flagkit.services.experiments import ExperimentService
from flagkit.services.stats import StatsRecorder, get_stats_recorder, record_events

router = APIRouter(prefix="/platforms/{platform}/environments/{environment}/experiments")
settings = get_settings()
logger = get_logger()


@router.post("", response_model=Experiment, status_code=201)
def create_experiment(
    platform: str,
    environment: str,
    request: ExperimentCreate,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    """
    Create an experiment in draft status.

    - Exactly one variation must be the control
    - Traffic allocation must cover every variation and sum to 100
    """
    experiment = ExperimentService(db).create(platform, environment, request)

    logger.info(
        "experiment_created",
        platform=platform,
        environment=environment,
        experiment_key=experiment.experiment_key,
        variations=len(experiment.variations),
        api_key=api_key.name
    )
    return experiment


@router.get("", response_model=Page[Experiment])
def list_experiments(
    platform: str,
    environment: str,
    status: Optional[ExperimentStatus] = None,
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    cursor: Optional[str] = None,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    return ExperimentService(db).list(platform, environment, status=status, limit=limit, cursor=cursor)


@router.get("/{experiment_key}", response_model=Experiment)
def get_experiment(
    platform: str,
    environment: str,
    experiment_key: str,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    return ExperimentService(db).get_active(platform, environment, experiment_key)


@router.get("/{experiment_key}/versions", response_model=List[Experiment])
def list_experiment_versions(
    platform: str,
    environment: str,
    experiment_key: str,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    return ExperimentService(db).list_versions(platform, environment, experiment_key)


@router.get("/{experiment_key}/versions/{version}", response_model=Experiment)
def get_experiment_version(
    platform: str,
    environment: str,
    experiment_key: str,
    version: int,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    return ExperimentService(db).get_version(platform, environment, experiment_key, version)


@router.put("/{experiment_key}", response_model=Experiment)
def update_experiment(
    platform: str,
    environment: str,
    experiment_key: str,
    request: ExperimentUpdate,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    """Edit a draft experiment. Creates a new version; 409 once started."""
    experiment = ExperimentService(db).update(platform, environment, experiment_key, request)

    logger.info(
        "experiment_updated",
        platform=platform,
        environment=environment,
        experiment_key=experiment_key,
        version=experiment.version,
        api_key=api_key.name
    )
    return experiment


@router.post("/{experiment_key}/{action}", response_model=Experiment)
def transition_experiment(
    platform: str,
    environment: str,
    experiment_key: str,
    action: StatusAction,
    request: Optional[ExperimentTransition] = None,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    """
    Apply a lifecycle action: start, pause, resume, complete or archive.

    `complete` accepts an optional winner, which must name a variation.
    """
    request = request or ExperimentTransition()
    service = ExperimentService(db)
    previous = service.get_active(platform, environment, experiment_key)
    experiment = service.transition(
        platform,
        environment,
        experiment_key,
        action,
        winner=request.winner,
        expected_version=request.expected_version,
        expected_revision=request.expected_revision
    )

    logger.info(
        "experiment_status_changed",
        platform=platform,
        environment=environment,
        experiment_key=experiment_key,
        action=action,
        from_status=previous.status.value,
        to_status=experiment.status.value,
        winner=experiment.winner,
        api_key=api_key.name
    )
    return experiment


@router.patch("/{experiment_key}/traffic", response_model=Experiment)
def update_traffic_allocation(
    platform: str,
    environment: str,
    experiment_key: str,
    request: TrafficAllocationUpdate,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    """Replace the traffic split in place. Allowed while draft, running or paused."""
    experiment = ExperimentService(db).update_traffic_allocation(
        platform,
        environment,
        experiment_key,
        request.traffic_allocation,
        expected_version=request.expected_version,
        expected_revision=request.expected_revision
    )

    logger.info(
        "experiment_traffic_updated",
        platform=platform,
        environment=environment,
        experiment_key=experiment_key,
        allocation={s.variation_key: s.percentage for s in experiment.traffic_allocation},
        api_key=api_key.name
    )
    return experiment


@router.delete("/{experiment_key}")
def delete_experiment(
    platform: str,
    environment: str,
    experiment_key: str,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db)
):
    """Delete every version. A running experiment must be paused or completed first."""
    deleted = ExperimentService(db).delete(platform, environment, experiment_key)

    logger.info(
        "experiment_deleted",
        platform=platform,
        environment=environment,
        experiment_key=experiment_key,
        versions=deleted,
        api_key=api_key.name
    )
    return {"experiment_key": experiment_key, "deleted_versions": deleted}


@router.get("/{experiment_key}/stats")
def get_experiment_stats(
    platform: str,
    environment: str,
    experiment_key: str,
    api_key: ApiKey = Depends(require_api_key),
    db: Session = Depends(get_db),
    stats: Optional[StatsRecorder] = Depends(get_stats_recorder)
):
    """Exposure counters: total and per variation."""
    ExperimentService(db).get_active(platform, environment, experiment_key)
    if stats is None:
        return {"experiment_key": experiment_key, "stats_enabled": False, "counts": {}}
    return {
        "experiment_key": experiment_key,
        "stats_enabled": True,
        "counts": stats.get_experiment_counts(platform, environment, experiment_key)
    }


@router.get("/{experiment_key}/assign", response_model=ExperimentDecision)
def assign_variation(
    platform: str,
    environment: str,
    experiment_key: str,
    background_tasks: BackgroundTasks,
    context: UserContext = Depends(user_context),
    db: Session = Depends(get_db),
    stats: Optional[StatsRecorder] = Depends(get_stats_recorder)
):
    """
    Assign a user to a variation.

    Returns `eligible: false` with a reason when the experiment is not
    running or the user is excluded by targeting. Only eligible
    assignments are recorded as exposures.
    """
    decision, events = EvaluationService(db).evaluate_experiment(
        platform, environment, experiment_key, context
    )
    background_tasks.add_task(record_events, stats, events)

    logger.debug(
        "experiment_assigned",
        platform=platform,
        environment=environment,
        experiment_key=experiment_key,
        eligible=decision.eligible,
        variation_key=decision.variation_key
    )
    return decision
