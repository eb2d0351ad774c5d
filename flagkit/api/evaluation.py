"""Public SDK evaluation endpoints."""
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from flagkit.database import get_db
from flagkit.middleware.logging import get_logger
from flagkit.schemas.evaluation import BatchEvaluation
from flagkit.schemas.targeting import UserContext
from flagkit.services.evaluation import EvaluationService
from flagkit.services.stats import StatsRecorder, get_stats_recorder, record_events

router = APIRouter(prefix="/platforms/{platform}/environments/{environment}")
logger = get_logger()


def user_context(
    user_id: str = Query("", max_length=256, description="Stable user, session or device id"),
    country: Optional[str] = Query(None, pattern=r"^[A-Za-z]{2}$"),
    language: Optional[str] = Query(None, pattern=r"^[A-Za-z]{2}$")
) -> UserContext:
    """Build the evaluation context from query parameters."""
    return UserContext(user_id=user_id, country=country, language=language)


@router.post("/evaluate", response_model=BatchEvaluation)
def evaluate_all(
    platform: str,
    environment: str,
    context: UserContext,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    stats: Optional[StatsRecorder] = Depends(get_stats_recorder)
):
    """
    Evaluate every active flag and running experiment for one context.

    Experiments the context is not eligible for are left out.
    """
    result, events = EvaluationService(db).evaluate_all(platform, environment, context)
    background_tasks.add_task(record_events, stats, events)

    logger.info(
        "batch_evaluated",
        platform=platform,
        environment=environment,
        flags=len(result.flags),
        experiments=len(result.experiments)
    )
    return result
